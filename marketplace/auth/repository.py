from typing import Any, Dict

from supabase import Client


def get_user_from_access_token(db: Client, access_token: str) -> Dict[str, Any]:
    """Récupère et normalise l'utilisateur depuis supabase.auth.get_user(access_token)."""
    res = db.auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
            "app_metadata": getattr(user, "app_metadata", None),
        }
    return user or {}
