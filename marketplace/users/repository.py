"""
Profil applicatif et adresses de livraison (tables users, addresses).
"""
from typing import Optional

from supabase import Client

from marketplace.infra.supabase_client import execute, first


def get_user_profile(db: Client, user_id: str) -> Optional[dict]:
    if not user_id:
        return None
    res = execute(
        db.table("users").select("id, email, first_name, last_name, phone").eq("id", user_id).limit(1),
        "users.get_user_profile",
    )
    return first(res)


def get_address(db: Client, address_id: str) -> Optional[dict]:
    """Adresse par ID, user_id inclus pour le contrôle de propriété côté service."""
    if not address_id:
        return None
    res = execute(
        db.table("addresses").select("*").eq("id", address_id).limit(1),
        "users.get_address",
    )
    return first(res)
