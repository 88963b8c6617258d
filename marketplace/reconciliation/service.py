"""
Rapprochement commande/paiement: applique un résultat de vérification une seule fois.

PostgREST n'offre pas de transaction multi-requêtes: chaque étape est un
compare-and-swap rejouable sans effet supplémentaire.
1. paiement PENDING -> SUCCESSFUL|FAILED (WHERE status = 'PENDING')
2. succès: payment_status PENDING|FAILED -> PAID, status PENDING -> PROCESSING,
   puis commit_order_stock (drapeau stock_committed réclamé côté base)
3. échec: payment_status PENDING -> FAILED, la commande reste PENDING
Un paiement déjà SUCCESSFUL rejoue les étapes 2 (no-op si déjà faites), ce qui
termine proprement un rapprochement interrompu.
"""
import logging
from typing import Any, Dict, Optional

from supabase import Client

from marketplace.cart.pricing import to_money
from marketplace.errors import ConflictError, NotFoundError, PaymentIntegrityError
from marketplace.orders import repository as orders_repo
from marketplace.orders.models import OrderPaymentStatus, OrderStatus, PaymentStatus
from marketplace.payments import repository as payments_repo
from marketplace.payments.mapping import VerifiedPayment
from marketplace.utils.dates import iso

logger = logging.getLogger(__name__)

UNPAID = [OrderPaymentStatus.PENDING.value, OrderPaymentStatus.FAILED.value]


def _result(payment: Dict[str, Any], order: Optional[Dict[str, Any]], applied: bool) -> Dict[str, Any]:
    return {"payment": payment, "order": order, "applied": applied}


def _gateway_fields(verified: VerifiedPayment) -> Dict[str, Any]:
    return {
        "gateway_transaction_id": verified.transaction_id,
        "flw_ref": verified.flw_ref,
        "gateway_response": verified.raw or None,
        "verified_at": iso(),
    }


def _reject(db: Client, payment: Dict[str, Any], verified: VerifiedPayment, reason: str) -> None:
    failed = payments_repo.transition_payment(
        db, payment["id"], PaymentStatus.FAILED.value, {**_gateway_fields(verified), "failure_reason": reason}
    )
    logger.warning(
        "reconcile rejected tx_ref=%s order_id=%s reason=%s applied=%s",
        payment.get("tx_ref"), payment.get("order_id"), reason, failed is not None,
    )


def _settle_paid_order(db: Client, order: Dict[str, Any], payment: Dict[str, Any]) -> Dict[str, Any]:
    """Étapes commande d'un paiement réussi, chacune gardée par l'état attendu."""
    order_id = order["id"]
    now = iso()
    paid = orders_repo.update_order_fields(
        db,
        order_id,
        {"payment_status": OrderPaymentStatus.PAID.value, "payment_ref": payment.get("tx_ref"), "paid_at": now, "updated_at": now},
        expected={"payment_status": UNPAID},
    )
    order = paid or order

    if order.get("status") == OrderStatus.CANCELLED.value:
        logger.warning(
            "reconcile payment captured on cancelled order order_number=%s tx_ref=%s: refund required",
            order.get("order_number"), payment.get("tx_ref"),
        )
        return order

    processing = orders_repo.update_order_fields(
        db,
        order_id,
        {"status": OrderStatus.PROCESSING.value, "updated_at": now},
        expected={"status": OrderStatus.PENDING.value},
    )
    order = processing or order

    stock = orders_repo.commit_order_stock(db, order_id)
    if stock.get("shortfalls"):
        logger.warning(
            "reconcile oversold order_number=%s shortfalls=%s", order.get("order_number"), stock.get("shortfalls")
        )
    if stock.get("applied"):
        logger.info("reconcile stock committed order_number=%s", order.get("order_number"))
    return order


def reconcile(db: Client, order_id: str, verified: VerifiedPayment) -> Dict[str, Any]:
    """
    Applique le résultat 'verified' à la tentative et à sa commande.
    Retour: {"payment", "order", "applied"}; applied=False quand rien n'a changé
    (résultat encore PENDING, ou tentative déjà terminale).
    Lève PaymentIntegrityError pour un tx_ref inconnu ou étranger à la commande,
    un montant/une devise incohérents, ou un second paiement réussi.
    """
    payment = payments_repo.get_payment_by_tx_ref(db, verified.tx_ref)
    if not payment or str(payment.get("order_id")) != str(order_id):
        logger.warning("reconcile unknown tx_ref=%s for order_id=%s", verified.tx_ref, order_id)
        raise PaymentIntegrityError("Référence de transaction inconnue pour cette commande", code="unknown_tx_ref")

    order = orders_repo.get_order(db, order_id)
    if not order:
        raise NotFoundError("Commande introuvable")

    current = payment.get("status")
    if current == PaymentStatus.SUCCESSFUL.value:
        return _result(payment, _settle_paid_order(db, order, payment), applied=False)
    if current == PaymentStatus.FAILED.value or verified.status == PaymentStatus.PENDING:
        return _result(payment, order, applied=False)

    if verified.status == PaymentStatus.FAILED:
        failed = payments_repo.transition_payment(
            db,
            payment["id"],
            PaymentStatus.FAILED.value,
            {**_gateway_fields(verified), "failure_reason": verified.processor_response or "declined"},
        )
        if failed is None:
            return _result(payments_repo.get_payment_by_tx_ref(db, verified.tx_ref), order, applied=False)
        order = orders_repo.update_order_fields(
            db,
            order_id,
            {"payment_status": OrderPaymentStatus.FAILED.value, "updated_at": iso()},
            expected={"payment_status": OrderPaymentStatus.PENDING.value},
        ) or order
        logger.info("reconcile payment failed tx_ref=%s order_number=%s", verified.tx_ref, order.get("order_number"))
        return _result(failed, order, applied=True)

    # SUCCESSFUL rapporté par la passerelle
    if not verified.matches(payment.get("tx_ref"), payment.get("amount"), payment.get("currency")) \
            or to_money(payment.get("amount")) != to_money(order.get("total_amount")):
        _reject(db, payment, verified, "amount_mismatch")
        raise PaymentIntegrityError(
            "Montant ou devise du paiement incohérents avec la commande",
            code="amount_mismatch",
            details={"expected": payment.get("amount"), "reported": verified.amount},
        )

    other = payments_repo.find_successful_payment(db, order_id)
    if other and other.get("id") != payment.get("id"):
        _reject(db, payment, verified, "duplicate_payment")
        raise PaymentIntegrityError("Commande déjà payée: remboursement requis", code="duplicate_payment")

    try:
        succeeded = payments_repo.transition_payment(
            db, payment["id"], PaymentStatus.SUCCESSFUL.value, _gateway_fields(verified)
        )
    except ConflictError:
        # Index partiel: une autre tentative est devenue SUCCESSFUL entre-temps
        _reject(db, payment, verified, "duplicate_payment")
        raise PaymentIntegrityError("Commande déjà payée: remboursement requis", code="duplicate_payment")

    if succeeded is None:
        payment = payments_repo.get_payment_by_tx_ref(db, verified.tx_ref)
        if payment and payment.get("status") == PaymentStatus.SUCCESSFUL.value:
            return _result(payment, _settle_paid_order(db, order, payment), applied=False)
        return _result(payment, order, applied=False)

    order = _settle_paid_order(db, order, succeeded)
    logger.info("reconcile payment successful tx_ref=%s order_number=%s", verified.tx_ref, order.get("order_number"))
    return _result(succeeded, order, applied=True)
