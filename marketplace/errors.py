"""
Erreurs typées du parcours checkout/paiement.

Deux familles, traduites en codes HTTP par app_setup.exceptions:
- ClientError: problème d'entrée ou d'état côté client (4xx), jamais rejoué automatiquement.
- DependencyError: dépendance externe indisponible (5xx), rejouable par l'appelant.
"""
from typing import Any, Dict, Optional


class CheckoutError(Exception):
    status_code = 400
    code = "checkout_error"
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}


class ClientError(CheckoutError):
    pass


class ValidationError(ClientError):
    code = "validation_error"


class InsufficientStockError(ValidationError):
    code = "insufficient_stock"


class AuthorizationError(ClientError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ClientError):
    status_code = 404
    code = "not_found"


class ConflictError(ClientError):
    status_code = 409
    code = "conflict"


class InvalidTransitionError(ClientError):
    status_code = 409
    code = "invalid_transition"


class PaymentIntegrityError(ClientError):
    """Montant, devise ou tx_ref incohérents: rejet sans nouvelle tentative automatique."""
    status_code = 409
    code = "payment_integrity"


class PaymentDeclinedError(ClientError):
    """Refus terminal de la passerelle: l'utilisateur peut relancer un nouveau paiement."""
    status_code = 402
    code = "payment_declined"


class DependencyError(CheckoutError):
    status_code = 503
    code = "dependency_unavailable"
    retryable = True


class PersistenceError(DependencyError):
    code = "persistence_unavailable"


class GatewayUnavailableError(DependencyError):
    code = "gateway_unavailable"
