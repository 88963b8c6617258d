# module marketplace.orders.views
"""Endpoints commandes du checkout.
- POST /api/checkout/create: crée une commande PENDING (authentifié, rate-limité)
- GET /api/checkout/orders, GET /api/checkout/orders/{order_id}: consultation
- PUT /api/checkout/orders/{order_id}/cancel: annulation avant expédition
- PUT /api/checkout/orders/{order_id}/status: transition administrateur
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from supabase import Client

from marketplace.infra.supabase_client import get_db
from marketplace.orders import service as orders_service
from marketplace.orders.models import CreateOrderRequest, OrderStatus, UpdateOrderStatusRequest
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.responses import ok
from marketplace.utils.security import require_admin, require_user

router = APIRouter(prefix="/api/checkout", tags=["Checkout API"])


@router.post("/create", status_code=201, dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_order(payload: CreateOrderRequest, user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    order = orders_service.create_order(db, user["id"], payload)
    return ok(order, message="Commande créée", status_code=201)


@router.get("/orders")
def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(require_user),
    db: Client = Depends(get_db),
):
    data = orders_service.list_orders(db, user["id"], status=status.value if status else None, page=page, limit=limit)
    return ok(data, message="Commandes récupérées")


@router.get("/orders/{order_id}")
def get_order(order_id: str, user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    return ok(orders_service.get_order_for_user(db, user["id"], order_id), message="Commande récupérée")


@router.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    return ok(orders_service.cancel_order(db, user["id"], order_id), message="Commande annulée")


@router.put("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: UpdateOrderStatusRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: Client = Depends(get_db),
):
    order = orders_service.update_order_status(db, order_id, payload.status.value)
    return ok(order, message="Statut de commande mis à jour")
