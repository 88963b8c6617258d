"""
Balayages de maintenance (endpoint admin et `python -m marketplace.maintenance`).
- sweep_pending_payments: re-vérifie les tentatives PENDING trop anciennes, expire celles restées en attente
- cancel_abandoned_orders: annule les commandes impayées au-delà de la fenêtre de relance
"""
import logging
from datetime import datetime
from typing import Dict, Optional

from supabase import Client

from marketplace import config
from marketplace.errors import GatewayUnavailableError, PaymentIntegrityError
from marketplace.orders import repository as orders_repo
from marketplace.orders.models import OrderStatus, PaymentStatus
from marketplace.payments import repository as payments_repo
from marketplace.payments import service as payments_service
from marketplace.payments.flutterwave_client import FlutterwaveClient
from marketplace.payments.mapping import VerifiedPayment
from marketplace.reconciliation.service import UNPAID, reconcile
from marketplace.utils.dates import iso, iso_before, utcnow

logger = logging.getLogger(__name__)


def sweep_pending_payments(db: Client, gateway: FlutterwaveClient, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Tentatives PENDING plus vieilles que PAYMENT_PENDING_TTL_MINUTES:
    - résultat passerelle terminal -> rapproché normalement
    - encore en attente -> FAILED ('expired')
    - passerelle indisponible -> ignorée (reste PENDING jusqu'au prochain passage)
    """
    now = now or utcnow()
    cutoff = iso_before(now, minutes=config.PAYMENT_PENDING_TTL_MINUTES)
    stats = {"checked": 0, "reconciled": 0, "expired": 0, "skipped": 0, "rejected": 0}

    for payment in payments_repo.list_stale_pending_payments(db, cutoff, config.SWEEP_BATCH_SIZE):
        stats["checked"] += 1
        tx_ref = payment["tx_ref"]
        try:
            verified = payments_service.verify_payment(gateway, tx_ref)
            if verified.status == PaymentStatus.PENDING:
                expired = VerifiedPayment(tx_ref=tx_ref, status=PaymentStatus.FAILED, processor_response="expired")
                result = reconcile(db, payment["order_id"], expired)
                stats["expired" if result["applied"] else "skipped"] += 1
            else:
                payments_service.apply_verification(db, payment, verified)
                stats["reconciled"] += 1
        except GatewayUnavailableError:
            logger.info("sweep gateway unavailable, tx_ref=%s left pending", tx_ref)
            stats["skipped"] += 1
        except PaymentIntegrityError:
            stats["rejected"] += 1

    logger.info("sweep_pending_payments %s", stats)
    return stats


def cancel_abandoned_orders(db: Client, now: Optional[datetime] = None) -> Dict[str, int]:
    """Commandes PENDING impayées plus vieilles que PAYMENT_RETRY_WINDOW_HOURS, sans tentative en cours -> CANCELLED."""
    now = now or utcnow()
    cutoff = iso_before(now, hours=config.PAYMENT_RETRY_WINDOW_HOURS)
    stats = {"checked": 0, "cancelled": 0, "skipped": 0}

    for order in orders_repo.list_abandoned_orders(db, cutoff, config.SWEEP_BATCH_SIZE):
        stats["checked"] += 1
        if payments_repo.list_order_payments(db, order["id"], status=PaymentStatus.PENDING.value):
            stats["skipped"] += 1
            continue
        stamp = iso(now)
        cancelled = orders_repo.update_order_fields(
            db,
            order["id"],
            {"status": OrderStatus.CANCELLED.value, "cancelled_at": stamp, "updated_at": stamp},
            expected={"status": OrderStatus.PENDING.value, "payment_status": UNPAID},
        )
        if cancelled:
            stats["cancelled"] += 1
            logger.info("cancel_abandoned_orders order_number=%s", order.get("order_number"))
        else:
            stats["skipped"] += 1

    logger.info("cancel_abandoned_orders %s", stats)
    return stats
