from typing import Any, Dict

from supabase import Client

from .repository import get_user_from_access_token as _repo_get_user_from_token

ROLES = ("admin", "customer")


def determine_role(app_metadata: Dict[str, Any] | None) -> str:
    """Rôle lu dans app_metadata (modifiable seulement avec la clé service), 'customer' par défaut."""
    role_lower = str((app_metadata or {}).get("role", "")).lower()
    if role_lower in ROLES:
        return role_lower
    return "customer"


def get_user_from_token(db: Client, access_token: str) -> Dict[str, Any]:
    """Normalise user issu de supabase.auth.get_user(access_token):
    - Retourne {id, email, metadata, role, token}
    - metadata (user_metadata) est éditable par l'utilisateur: jamais utilisé pour le rôle
    """
    raw = _repo_get_user_from_token(db, access_token)
    metadata = raw.get("user_metadata") or {}
    return {
        "id": raw.get("id"),
        "email": raw.get("email"),
        "metadata": metadata,
        "role": determine_role(raw.get("app_metadata")),
        "token": access_token,
    }
