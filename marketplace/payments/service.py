"""
Logique métier des paiements: initialisation d'une tentative, vérification et webhook.
Le rapprochement lui-même (mise à jour commande/paiement/stock) est délégué à reconciliation.service.
"""
import logging
import secrets
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from supabase import Client

from marketplace import config
from marketplace.cart.pricing import to_money
from marketplace.errors import (
    AuthorizationError,
    ConflictError,
    GatewayUnavailableError,
    InvalidTransitionError,
    PaymentDeclinedError,
    PaymentIntegrityError,
)
from marketplace.orders import service as orders_service
from marketplace.orders.models import OrderPaymentStatus, OrderStatus, PaymentStatus, TERMINAL_PAYMENT_STATUSES
from marketplace.payments import repository
from marketplace.payments.flutterwave_client import PAYMENT_OPTIONS, FlutterwaveClient, GatewayRequestError
from marketplace.payments.mapping import (
    VerifiedPayment,
    extract_webhook_tx_ref,
    is_valid_signature,
    parse_verification,
)
from marketplace.reconciliation import service as reconciliation
from marketplace.users import repository as users_repo

logger = logging.getLogger(__name__)

# Échecs qui relèvent de l'intégrité et non d'un refus de paiement
INTEGRITY_FAILURES = {"amount_mismatch", "duplicate_payment", "tx_ref_mismatch"}


def generate_tx_ref(order_number: str) -> str:
    """Référence unique par tentative: <order_number>-<epoch ms>-<4 hex>."""
    return f"{order_number}-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


def _customer_info(db: Client, user: Dict[str, Any]) -> Dict[str, Any]:
    profile = users_repo.get_user_profile(db, user.get("id")) or {}
    name = " ".join(p for p in (profile.get("first_name"), profile.get("last_name")) if p).strip()
    customer = {
        "email": profile.get("email") or user.get("email"),
        "name": name or profile.get("email") or user.get("email"),
    }
    if profile.get("phone"):
        customer["phonenumber"] = profile["phone"]
    return customer


def _origin(url: str) -> Tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()


def _safe_redirect(order_id: str, redirect_url: Optional[str]) -> str:
    """Seules les URLs du frontend ou de l'API (même schéma, même hôte:port) sont acceptées comme retour de paiement."""
    if redirect_url and _origin(redirect_url) in {_origin(config.FRONTEND_URL), _origin(config.BASE_URL)}:
        return redirect_url
    return f"{config.BASE_URL}/api/checkout/{order_id}/payment/callback"


def initialize_payment(
    db: Client,
    gateway: FlutterwaveClient,
    user: Dict[str, Any],
    order_id: str,
    payment_method: Optional[str] = None,
    redirect_url: Optional[str] = None,
    customer: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Démarre une tentative de paiement pour une commande PENDING non payée.
    Étapes:
    - Contrôle propriété et état de la commande
    - Enregistre la tentative PENDING (montant = total de la commande) avant l'appel passerelle
    - Demande un lien de paiement hébergé puis le stocke sur la tentative
    En cas d'échec passerelle, la tentative est passée FAILED (aucune ligne PENDING orpheline).
    Retour: {"paymentLink", "txRef", "payment"}
    """
    order = orders_service.get_owned_order(db, user["id"], order_id)
    if order.get("payment_status") == OrderPaymentStatus.PAID.value:
        raise ConflictError("Cette commande est déjà payée", code="already_paid")
    if order.get("status") != OrderStatus.PENDING.value:
        raise InvalidTransitionError("Cette commande n'accepte plus de paiement")

    method = payment_method or order.get("payment_method") or "card"
    amount = to_money(order.get("total_amount"))
    tx_ref = generate_tx_ref(order["order_number"])
    payment = repository.insert_payment(
        db,
        order_id=order_id,
        tx_ref=tx_ref,
        amount=str(amount),
        currency=config.PAYMENT_CURRENCY,
        payment_method=method,
    )

    payload = {
        "tx_ref": tx_ref,
        "amount": str(amount),
        "currency": config.PAYMENT_CURRENCY,
        "redirect_url": _safe_redirect(order_id, redirect_url),
        "payment_options": PAYMENT_OPTIONS.get(method, "card"),
        "customer": customer or _customer_info(db, user),
        "customizations": {
            "title": config.STORE_NAME,
            "description": f"Commande {order['order_number']}",
        },
        "meta": {"order_id": order_id, "user_id": user["id"]},
    }

    try:
        response = gateway.create_payment(payload)
    except GatewayUnavailableError:
        repository.transition_payment(db, payment["id"], PaymentStatus.FAILED.value, {"failure_reason": "gateway_unavailable"})
        raise
    except GatewayRequestError as e:
        repository.transition_payment(db, payment["id"], PaymentStatus.FAILED.value, {"failure_reason": e.message[:255]})
        raise PaymentDeclinedError(e.message, code="payment_rejected")

    link = ((response or {}).get("data") or {}).get("link")
    if not link:
        repository.transition_payment(db, payment["id"], PaymentStatus.FAILED.value, {"failure_reason": "missing_link"})
        logger.warning("payments.initialize_payment no link tx_ref=%s response=%s", tx_ref, response)
        raise GatewayUnavailableError("Lien de paiement indisponible, réessayez")

    payment = repository.update_payment_fields(db, payment["id"], {"payment_link": link}) or {**payment, "payment_link": link}
    logger.info("payments.initialize_payment order_number=%s tx_ref=%s amount=%s", order["order_number"], tx_ref, amount)
    return {"paymentLink": link, "txRef": tx_ref, "payment": payment}


def verify_payment(gateway: FlutterwaveClient, tx_ref: str) -> VerifiedPayment:
    """
    Interroge la passerelle et traduit la réponse.
    - 4xx (transaction inconnue côté passerelle) -> PENDING
    - indisponibilité -> GatewayUnavailableError (propagée)
    """
    try:
        payload = gateway.verify_by_reference(tx_ref)
    except GatewayRequestError:
        return VerifiedPayment.pending(tx_ref)
    return parse_verification(payload, tx_ref)


def apply_verification(db: Client, payment: Dict[str, Any], verified: VerifiedPayment) -> Dict[str, Any]:
    """Rapproche une vérification avec la tentative connue, après contrôle de la référence rapportée."""
    tx_ref = payment["tx_ref"]
    if verified.tx_ref != tx_ref:
        if verified.status != PaymentStatus.SUCCESSFUL:
            verified = VerifiedPayment.pending(tx_ref, raw=verified.raw)
        else:
            repository.transition_payment(
                db, payment["id"], PaymentStatus.FAILED.value,
                {"failure_reason": "tx_ref_mismatch", "gateway_response": verified.raw or None},
            )
            logger.warning("payments.apply_verification tx_ref mismatch expected=%s reported=%s", tx_ref, verified.tx_ref)
            raise PaymentIntegrityError("Référence de transaction incohérente", code="tx_ref_mismatch")
    return reconciliation.reconcile(db, payment["order_id"], verified)


def settle_reference(db: Client, gateway: FlutterwaveClient, order_id: str, tx_ref: str) -> Dict[str, Any]:
    """
    Vérifie puis rapproche une tentative de la commande.
    Une tentative déjà terminale n'interroge pas la passerelle (appels répétés sans effet).
    """
    payment = repository.get_payment_by_tx_ref(db, tx_ref)
    if not payment or str(payment.get("order_id")) != str(order_id):
        logger.warning("payments.verify suspicious tx_ref=%s order_id=%s", tx_ref, order_id)
        raise PaymentIntegrityError("Référence de transaction inconnue pour cette commande", code="unknown_tx_ref")

    if payment.get("status") in TERMINAL_PAYMENT_STATUSES:
        verified = VerifiedPayment(tx_ref=tx_ref, status=PaymentStatus(payment["status"]))
        return reconciliation.reconcile(db, order_id, verified)
    return apply_verification(db, payment, verify_payment(gateway, tx_ref))


def _outcome(result: Dict[str, Any]) -> Dict[str, Any]:
    payment = result.get("payment") or {}
    order = result.get("order") or {}
    status = payment.get("status")
    if status == PaymentStatus.FAILED.value:
        reason = payment.get("failure_reason")
        if reason in INTEGRITY_FAILURES:
            raise PaymentIntegrityError("Paiement rejeté pour incohérence", code=reason)
        raise PaymentDeclinedError(
            "Paiement refusé, vous pouvez relancer un nouveau paiement",
            details={"txRef": payment.get("tx_ref"), "reason": reason},
        )
    return {
        "status": status,
        "txRef": payment.get("tx_ref"),
        "orderId": payment.get("order_id"),
        "orderStatus": order.get("status"),
        "paymentStatus": order.get("payment_status"),
        "applied": bool(result.get("applied")),
    }


def verify_and_reconcile(
    db: Client,
    gateway: FlutterwaveClient,
    user: Dict[str, Any],
    order_id: str,
    tx_ref: str,
) -> Dict[str, Any]:
    """
    Vérification demandée par le client après redirection.
    - SUCCESSFUL/PENDING: retourne l'état (identique à chaque appel)
    - FAILED: PaymentDeclinedError (ou PaymentIntegrityError pour une incohérence)
    """
    orders_service.get_owned_order(db, user["id"], order_id)
    return _outcome(settle_reference(db, gateway, order_id, tx_ref))


def handle_callback(db: Client, gateway: FlutterwaveClient, order_id: str, tx_ref: Optional[str]) -> str:
    """Retour navigateur depuis la passerelle: statut à afficher (successful|pending|failed)."""
    if not tx_ref:
        return "failed"
    try:
        outcome = _outcome(settle_reference(db, gateway, order_id, tx_ref))
    except (PaymentDeclinedError, PaymentIntegrityError):
        return "failed"
    except GatewayUnavailableError:
        return "pending"
    return "successful" if outcome["status"] == PaymentStatus.SUCCESSFUL.value else "pending"


def handle_webhook(db: Client, gateway: FlutterwaveClient, payload: Dict[str, Any], signature: Optional[str]) -> Dict[str, Any]:
    """
    Webhook Flutterwave. Le contenu n'est jamais cru: seul le tx_ref est lu,
    puis re-vérifié auprès de la passerelle avant rapprochement.
    Retour: {"status": "ok"|"ignored"|"rejected"}; une indisponibilité passerelle est propagée (le webhook sera rejoué).
    """
    if not is_valid_signature(signature, config.FLUTTERWAVE_SECRET_HASH):
        logger.warning("payments.webhook invalid signature")
        raise AuthorizationError("Signature de webhook invalide", code="invalid_signature")

    tx_ref = extract_webhook_tx_ref(payload)
    payment = repository.get_payment_by_tx_ref(db, tx_ref) if tx_ref else None
    if not payment:
        logger.info("payments.webhook ignored tx_ref=%s", tx_ref)
        return {"status": "ignored"}

    try:
        result = settle_reference(db, gateway, payment["order_id"], tx_ref)
    except PaymentIntegrityError as e:
        return {"status": "rejected", "reason": e.code}
    return {"status": "ok", "paymentStatus": (result.get("payment") or {}).get("status")}
