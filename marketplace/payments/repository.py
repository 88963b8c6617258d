"""
Accès aux données pour la feature 'payments' (table payments).
Une ligne par tentative; tx_ref unique; au plus une ligne SUCCESSFUL par commande (index partiel).
"""
import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from marketplace.infra.supabase_client import execute, first, rows
from marketplace.utils.dates import iso

logger = logging.getLogger(__name__)


# module marketplace.payments.repository
def insert_payment(
    db: Client,
    *,
    order_id: str,
    tx_ref: str,
    amount: str,
    currency: str,
    payment_method: str,
) -> Optional[dict]:
    """Enregistre une tentative PENDING (avant tout appel à la passerelle)."""
    res = execute(
        db.table("payments").insert({
            "order_id": order_id,
            "tx_ref": tx_ref,
            "amount": amount,
            "currency": currency,
            "payment_method": payment_method,
            "status": "PENDING",
        }),
        "payments.insert_payment",
    )
    return first(res)


def get_payment_by_tx_ref(db: Client, tx_ref: str) -> Optional[dict]:
    if not tx_ref:
        return None
    res = execute(
        db.table("payments").select("*").eq("tx_ref", tx_ref).limit(1),
        "payments.get_payment_by_tx_ref",
    )
    return first(res)


def find_successful_payment(db: Client, order_id: str) -> Optional[dict]:
    res = execute(
        db.table("payments").select("*").eq("order_id", order_id).eq("status", "SUCCESSFUL").limit(1),
        "payments.find_successful_payment",
    )
    return first(res)


def list_order_payments(db: Client, order_id: str, status: Optional[str] = None) -> List[dict]:
    query = db.table("payments").select(
        "id, tx_ref, amount, currency, status, payment_method, failure_reason, verified_at, created_at"
    ).eq("order_id", order_id)
    if status:
        query = query.eq("status", status)
    res = execute(query.order("created_at", desc=True), "payments.list_order_payments")
    return rows(res)


def update_payment_fields(db: Client, payment_id: str, fields: Dict[str, Any]) -> Optional[dict]:
    res = execute(
        db.table("payments").update({**fields, "updated_at": iso()}).eq("id", payment_id),
        "payments.update_payment_fields",
    )
    return first(res)


def transition_payment(
    db: Client,
    payment_id: str,
    to_status: str,
    fields: Optional[Dict[str, Any]] = None,
    from_status: str = "PENDING",
) -> Optional[dict]:
    """
    Compare-and-swap du statut: UPDATE ... WHERE id = :id AND status = :from_status.
    Retourne la ligne mise à jour, ou None si une autre requête a déjà fait la transition.
    """
    res = execute(
        db.table("payments")
        .update({**(fields or {}), "status": to_status, "updated_at": iso()})
        .eq("id", payment_id)
        .eq("status", from_status),
        "payments.transition_payment",
    )
    return first(res)


def list_stale_pending_payments(db: Client, created_before: str, limit: int = 100) -> List[dict]:
    """Tentatives PENDING plus anciennes que la date donnée (balayage d'expiration)."""
    res = execute(
        db.table("payments")
        .select("*")
        .eq("status", "PENDING")
        .lt("created_at", created_before)
        .order("created_at")
        .limit(limit),
        "payments.list_stale_pending_payments",
    )
    return rows(res)
