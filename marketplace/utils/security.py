from typing import Any, Dict

from fastapi import Depends, HTTPException, Request
from supabase import Client

from marketplace.auth.service import get_user_from_token
from marketplace.infra.supabase_client import get_db

COOKIE_NAME = "sb_access"


def _token_from_request(request: Request) -> str | None:
    # Hybride: priorité au Bearer, fallback cookie
    token = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME)
    return token or None


def get_current_user(request: Request, db: Client = Depends(get_db)) -> Dict[str, Any]:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    try:
        user = get_user_from_token(db, token)
    except Exception:
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return user


def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Accès interdit")
    return user
