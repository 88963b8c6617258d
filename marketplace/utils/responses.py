"""
Enveloppe de réponse attendue par le frontend (ApiResponse<T>):
{ "success": bool, "message": str, "data"?: T, "error"?: str }
Les montants (Decimal) sortent en chaînes à deux décimales, jamais en float.
"""
from decimal import Decimal
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

MONEY_ENCODER = {Decimal: str}


def ok(data: Any = None, message: str = "OK", status_code: int = 200) -> JSONResponse:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body, custom_encoder=MONEY_ENCODER))


def fail(message: str, status_code: int = 400, error: Optional[str] = None, details: Any = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body, custom_encoder=MONEY_ENCODER))
