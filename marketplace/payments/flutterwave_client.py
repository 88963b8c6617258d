"""
Adaptateur Flutterwave v3: centralise les appels HTTP et la configuration de la passerelle.
- create_payment: POST /payments (lien de paiement hébergé)
- verify_by_reference: GET /transactions/verify_by_reference?tx_ref=...
Erreurs:
- délai dépassé, erreur réseau, 5xx -> GatewayUnavailableError (rejouable)
- 4xx -> GatewayRequestError (réponse définitive de la passerelle)
"""
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import Request

from marketplace import config
from marketplace.errors import GatewayUnavailableError

logger = logging.getLogger(__name__)

# Moyen de paiement interne -> payment_options Flutterwave
PAYMENT_OPTIONS = {
    "card": "card",
    "mobile_money": "mobilemoneyrwanda",
    "bank_transfer": "banktransfer",
}


class GatewayRequestError(Exception):
    """Requête refusée par la passerelle (4xx): message et code HTTP conservés."""

    def __init__(self, message: str, status_code: int, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


# module marketplace.payments.flutterwave_client
class FlutterwaveClient:
    def __init__(
        self,
        secret_key: str,
        base_url: str = config.FLUTTERWAVE_BASE_URL,
        timeout: float = config.GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not secret_key:
            raise RuntimeError("FLUTTERWAVE_SECRET_KEY manquant")
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {secret_key}", "Content-Type": "application/json"},
            transport=transport,
        )

    def _request(self, method: str, path: str, action: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("flutterwave %s timeout", action)
            raise GatewayUnavailableError("La passerelle de paiement ne répond pas, réessayez") from e
        except httpx.HTTPError as e:
            logger.warning("flutterwave %s transport error: %s", action, e)
            raise GatewayUnavailableError("Passerelle de paiement injoignable, réessayez") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 500:
            logger.warning("flutterwave %s status=%s", action, resp.status_code)
            raise GatewayUnavailableError("Passerelle de paiement indisponible, réessayez")
        if resp.status_code >= 400:
            message = (body or {}).get("message") or f"Requête refusée ({resp.status_code})"
            logger.info("flutterwave %s rejected status=%s message=%s", action, resp.status_code, message)
            raise GatewayRequestError(message, resp.status_code, body)
        return body if isinstance(body, dict) else {}

    def create_payment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Crée un paiement hébergé.
        payload: {tx_ref, amount, currency, redirect_url, payment_options, customer, customizations, meta}
        Retour: {"status": "success", "data": {"link": "https://checkout.flutterwave.com/..."}}
        """
        return self._request("POST", "/payments", "create_payment", json=payload)

    def verify_by_reference(self, tx_ref: str) -> Dict[str, Any]:
        """Vérifie une transaction par tx_ref (statut, montant, devise rapportés par la passerelle)."""
        return self._request(
            "GET", "/transactions/verify_by_reference", "verify_by_reference", params={"tx_ref": tx_ref}
        )

    def close(self) -> None:
        self._http.close()


def create_gateway_client() -> FlutterwaveClient:
    return FlutterwaveClient(config.FLUTTERWAVE_SECRET_KEY)


def get_gateway(request: Request) -> FlutterwaveClient:
    gateway: Optional[FlutterwaveClient] = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise GatewayUnavailableError("Passerelle de paiement non configurée")
    return gateway
