# module marketplace.admin.views
"""Endpoints d'administration du cycle de paiement (rôle admin requis)."""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from supabase import Client

from marketplace.infra.supabase_client import get_db
from marketplace.payments.flutterwave_client import FlutterwaveClient, get_gateway
from marketplace.reconciliation import sweeps
from marketplace.utils.responses import ok
from marketplace.utils.security import require_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["Admin API"])


@router.post("/payments/sweep")
def sweep_payments(
    admin: Dict[str, Any] = Depends(require_admin),
    db: Client = Depends(get_db),
    gateway: FlutterwaveClient = Depends(get_gateway),
):
    """Expire les tentatives PENDING trop anciennes puis annule les commandes abandonnées."""
    payments = sweeps.sweep_pending_payments(db, gateway)
    orders = sweeps.cancel_abandoned_orders(db)
    logger.info("admin.sweep_payments by=%s", admin.get("email"))
    return ok({"payments": payments, "orders": orders}, message="Balayage terminé")
