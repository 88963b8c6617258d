"""
Traduction des réponses Flutterwave vers le vocabulaire interne.
- map_gateway_status: statut passerelle -> PaymentStatus
- parse_verification: réponse de vérification -> VerifiedPayment
- helpers webhook: signature (en-tête verif-hash) et extraction du tx_ref
"""
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from marketplace.cart.pricing import to_money
from marketplace.orders.models import PaymentStatus

_SUCCESS = {"successful", "success", "completed"}
_FAILURE = {"failed", "cancelled", "canceled", "declined", "error"}


# module marketplace.payments.mapping
def map_gateway_status(raw: Optional[str]) -> PaymentStatus:
    """Tout statut non reconnu reste PENDING (jamais de succès par défaut)."""
    value = str(raw or "").strip().lower()
    if value in _SUCCESS:
        return PaymentStatus.SUCCESSFUL
    if value in _FAILURE:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


@dataclass(frozen=True)
class VerifiedPayment:
    """Résultat de vérification d'une tentative de paiement, tel que rapporté par la passerelle."""
    tx_ref: str
    status: PaymentStatus
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    flw_ref: Optional[str] = None
    processor_response: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def pending(cls, tx_ref: str, raw: Optional[Dict[str, Any]] = None) -> "VerifiedPayment":
        return cls(tx_ref=tx_ref, status=PaymentStatus.PENDING, raw=raw or {})

    def matches(self, tx_ref: str, amount: Any, currency: str) -> bool:
        """Cohérence avec la tentative enregistrée: même tx_ref, même montant, même devise."""
        if self.tx_ref != tx_ref:
            return False
        if self.amount is None or to_money(self.amount) != to_money(amount):
            return False
        return str(self.currency or "").upper() == str(currency or "").upper()


def _reported_amount(value: Any) -> Optional[Decimal]:
    # montant illisible: traité comme absent, donc incohérent avec la tentative
    if value is None:
        return None
    try:
        return to_money(value)
    except ValueError:
        return None


def parse_verification(payload: Dict[str, Any], tx_ref: str) -> VerifiedPayment:
    """
    Construit un VerifiedPayment depuis la réponse de verify_by_reference:
    {"status": "success", "data": {"tx_ref", "amount", "currency", "status", "id", "flw_ref", ...}}
    Le statut retenu est celui de la transaction (data.status), pas celui de l'appel.
    """
    data = (payload or {}).get("data") or {}
    if not isinstance(data, dict) or not data:
        return VerifiedPayment.pending(tx_ref, raw=payload or {})
    transaction_id = data.get("id")
    return VerifiedPayment(
        tx_ref=str(data.get("tx_ref") or ""),
        status=map_gateway_status(data.get("status")),
        amount=_reported_amount(data.get("amount")),
        currency=data.get("currency"),
        transaction_id=str(transaction_id) if transaction_id is not None else None,
        flw_ref=data.get("flw_ref"),
        processor_response=data.get("processor_response"),
        raw=payload,
    )


def is_valid_signature(received: Optional[str], secret_hash: str) -> bool:
    """Comparaison en temps constant de l'en-tête verif-hash avec le secret configuré."""
    if not received or not secret_hash:
        return False
    return secrets.compare_digest(received.encode("utf-8"), secret_hash.encode("utf-8"))


def extract_webhook_tx_ref(payload: Dict[str, Any]) -> Optional[str]:
    """tx_ref d'un événement webhook (format v3 'data.tx_ref' ou ancien format 'txRef' à plat)."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and data.get("tx_ref"):
        return str(data["tx_ref"])
    for key in ("tx_ref", "txRef"):
        if payload.get(key):
            return str(payload[key])
    return None
