"""
Gestionnaires d'exceptions utilisés par la factory.
Toutes les erreurs sortent dans l'enveloppe ApiResponse du frontend:
{ "success": false, "message": str, "error": str }
- CheckoutError: code HTTP porté par la classe (4xx client, 503 dépendance)
- HTTPException: 401/403/404/429 levées par FastAPI ou les dépendances
- RequestValidationError: corps/paramètres invalides (400)
"""
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException

from marketplace.errors import CheckoutError
from marketplace.utils.responses import fail

logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        if exc.retryable:
            logger.warning("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.code)
        return fail(exc.message, status_code=exc.status_code, error=exc.code, details=exc.details)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else "Erreur"
        response = fail(detail, status_code=exc.status_code, error=_HTTP_ERROR_CODES.get(exc.status_code, "http_error"))
        for key, value in (exc.headers or {}).items():
            response.headers[key] = value
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return fail("Données invalides", status_code=400, error="validation_error", details={"errors": errors})
