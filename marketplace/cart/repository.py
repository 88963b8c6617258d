"""
Accès aux données pour la feature 'cart' (table cart_items).
"""
import logging
from typing import List, Optional

from supabase import Client

from marketplace.infra.supabase_client import execute, first, rows

logger = logging.getLogger(__name__)

CART_FIELDS = "id, user_id, product_id, variant_id, quantity, created_at"


# module marketplace.cart.repository
def list_cart_items(db: Client, user_id: str) -> List[dict]:
    """Lignes du panier de l'utilisateur, les plus récentes d'abord."""
    res = execute(
        db.table("cart_items")
        .select(CART_FIELDS)
        .eq("user_id", user_id)
        .order("created_at", desc=True),
        "cart.list_cart_items",
    )
    return rows(res)


def get_cart_item(db: Client, user_id: str, item_id: str) -> Optional[dict]:
    res = execute(
        db.table("cart_items").select(CART_FIELDS).eq("id", item_id).eq("user_id", user_id).limit(1),
        "cart.get_cart_item",
    )
    return first(res)


def find_cart_item(db: Client, user_id: str, product_id: str, variant_id: Optional[str]) -> Optional[dict]:
    """Ligne existante pour le couple (produit, variante), variante nulle comprise."""
    query = db.table("cart_items").select(CART_FIELDS).eq("user_id", user_id).eq("product_id", product_id)
    if variant_id:
        query = query.eq("variant_id", variant_id)
    else:
        query = query.is_("variant_id", "null")
    return first(execute(query.limit(1), "cart.find_cart_item"))


def insert_cart_item(db: Client, *, user_id: str, product_id: str, variant_id: Optional[str], quantity: int) -> Optional[dict]:
    res = execute(
        db.table("cart_items").insert({
            "user_id": user_id,
            "product_id": product_id,
            "variant_id": variant_id,
            "quantity": quantity,
        }),
        "cart.insert_cart_item",
    )
    return first(res)


def update_cart_item_quantity(db: Client, item_id: str, quantity: int) -> Optional[dict]:
    res = execute(
        db.table("cart_items").update({"quantity": quantity}).eq("id", item_id),
        "cart.update_cart_item_quantity",
    )
    return first(res)


def delete_cart_item(db: Client, item_id: str) -> bool:
    res = execute(db.table("cart_items").delete().eq("id", item_id), "cart.delete_cart_item")
    return bool(rows(res))


def clear_cart(db: Client, user_id: str) -> int:
    res = execute(db.table("cart_items").delete().eq("user_id", user_id), "cart.clear_cart")
    removed = len(rows(res))
    logger.info("cart.clear_cart user_id=%s removed=%s", user_id, removed)
    return removed
