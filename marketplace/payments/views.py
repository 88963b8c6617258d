# module marketplace.payments.views
"""Endpoints paiement.
- POST /api/checkout/{order_id}/payment/initialize: lien de paiement Flutterwave (authentifié, rate-limité)
- POST /api/checkout/{order_id}/payment/verify: vérification + rapprochement (idempotent)
- GET /api/checkout/{order_id}/payment/callback: retour navigateur depuis la passerelle
- POST /api/payments/webhook: notification Flutterwave (en-tête verif-hash)
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header
from fastapi.responses import RedirectResponse
from supabase import Client

from marketplace import config
from marketplace.infra.supabase_client import get_db
from marketplace.orders.models import InitializePaymentRequest, VerifyPaymentRequest
from marketplace.payments import service as payments_service
from marketplace.payments.flutterwave_client import FlutterwaveClient, get_gateway
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.responses import ok
from marketplace.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/checkout", tags=["Payments API"])
webhook_router = APIRouter(prefix="/api/payments", tags=["Payments API"])


@router.post("/{order_id}/payment/initialize", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def initialize_payment(
    order_id: str,
    payload: Optional[InitializePaymentRequest] = Body(default=None),
    user: Dict[str, Any] = Depends(require_user),
    db: Client = Depends(get_db),
    gateway: FlutterwaveClient = Depends(get_gateway),
):
    payload = payload or InitializePaymentRequest()
    data = payments_service.initialize_payment(
        db,
        gateway,
        user,
        order_id,
        payment_method=payload.payment_method.value if payload.payment_method else None,
        redirect_url=payload.redirect_url,
    )
    return ok(data, message="Paiement initialisé")


@router.post("/{order_id}/payment/verify", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def verify_payment(
    order_id: str,
    payload: VerifyPaymentRequest,
    user: Dict[str, Any] = Depends(require_user),
    db: Client = Depends(get_db),
    gateway: FlutterwaveClient = Depends(get_gateway),
):
    data = payments_service.verify_and_reconcile(db, gateway, user, order_id, payload.tx_ref)
    message = "Paiement confirmé" if data["status"] == "SUCCESSFUL" else "Paiement en attente de confirmation"
    return ok(data, message=message)


@router.get("/{order_id}/payment/callback", include_in_schema=False)
def payment_callback(
    order_id: str,
    tx_ref: Optional[str] = None,
    status: Optional[str] = None,
    transaction_id: Optional[str] = None,
    db: Client = Depends(get_db),
    gateway: FlutterwaveClient = Depends(get_gateway),
):
    """Redirection navigateur: le statut en query n'est pas cru, la transaction est re-vérifiée."""
    outcome = payments_service.handle_callback(db, gateway, order_id, tx_ref)
    logger.info(
        "payments.callback order_id=%s tx_ref=%s reported=%s transaction_id=%s outcome=%s",
        order_id, tx_ref, status, transaction_id, outcome,
    )
    return RedirectResponse(url=f"{config.FRONTEND_URL}/orders/{order_id}?payment={outcome}", status_code=303)


@webhook_router.post("/webhook", include_in_schema=False)
def payment_webhook(
    payload: Dict[str, Any] = Body(...),
    verif_hash: Optional[str] = Header(default=None, alias="verif-hash"),
    db: Client = Depends(get_db),
    gateway: FlutterwaveClient = Depends(get_gateway),
):
    result = payments_service.handle_webhook(db, gateway, payload, verif_hash)
    return ok(result, message="Webhook traité")
