"""
Client Supabase unique pour le processus.
- create_service_client: construit le client service-role (appelé une fois dans le lifespan).
- get_db: dépendance FastAPI qui injecte le client stocké sur app.state.
- execute: exécute une requête PostgREST et traduit les erreurs en erreurs typées.
"""
import logging
from typing import Any, Optional

import httpx
from fastapi import Request
from postgrest.exceptions import APIError
from supabase import create_client, Client

from marketplace.config import SUPABASE_URL, SUPABASE_SERVICE_KEY
from marketplace.errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def create_service_client(url: str = SUPABASE_URL, key: str = SUPABASE_SERVICE_KEY) -> Client:
    if not url or not key:
        raise RuntimeError("SUPABASE_URL/SUPABASE_SERVICE_KEY manquants")
    return create_client(url, key)


def get_db(request: Request) -> Client:
    client: Optional[Client] = getattr(request.app.state, "supabase", None)
    if client is None:
        raise PersistenceError("Base de données non configurée")
    return client


def _error_code(exc: APIError) -> Optional[str]:
    code = getattr(exc, "code", None)
    if code:
        return str(code)
    if exc.args and isinstance(exc.args[0], dict):
        return exc.args[0].get("code")
    return None


def execute(query: Any, action: str):
    """
    Exécute query.execute() pour l'action nommée (utilisée dans les logs).
    - 23505 (contrainte unique) -> ConflictError
    - autre APIError / erreur réseau -> PersistenceError
    """
    try:
        return query.execute()
    except APIError as e:
        code = _error_code(e)
        if code == UNIQUE_VIOLATION:
            logger.warning("supabase %s conflict: %s", action, e)
            raise ConflictError("Enregistrement déjà existant", code="duplicate") from e
        logger.exception("supabase %s failed code=%s", action, code)
        raise PersistenceError("Erreur de base de données") from e
    except httpx.HTTPError as e:
        logger.exception("supabase %s unreachable", action)
        raise PersistenceError("Base de données injoignable") from e


def rows(res) -> list:
    data = getattr(res, "data", None) or []
    if isinstance(data, dict):
        return [data]
    return list(data)


def first(res) -> Optional[dict]:
    data = rows(res)
    return data[0] if data else None
