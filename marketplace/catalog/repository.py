"""
Accès aux données catalogue (tables products et product_variants).
Lecture seule: le checkout ne modifie le stock que via les fonctions SQL de orders.repository.
"""
from typing import Any, Dict, Iterable, List

from supabase import Client

from marketplace.infra.supabase_client import execute, rows

PRODUCT_FIELDS = "id, name, base_price, stock, is_active, status"
VARIANT_FIELDS = "id, product_id, name, price, stock, is_active"


def fetch_products_by_ids(db: Client, ids: List[str]) -> List[dict]:
    if not ids:
        return []
    res = execute(
        db.table("products").select(PRODUCT_FIELDS).in_("id", [str(i) for i in ids]),
        "catalog.fetch_products_by_ids",
    )
    return rows(res)


def fetch_variants_by_ids(db: Client, ids: List[str]) -> List[dict]:
    if not ids:
        return []
    res = execute(
        db.table("product_variants").select(VARIANT_FIELDS).in_("id", [str(i) for i in ids]),
        "catalog.fetch_variants_by_ids",
    )
    return rows(res)


def get_products_map(db: Client, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Retourne {id: produit} pour les IDs demandés (les IDs inconnus sont absents)."""
    products = fetch_products_by_ids(db, sorted({str(i) for i in ids if i}))
    return {str(p.get("id")): p for p in products}


def get_variants_map(db: Client, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Retourne {id: variante} pour les IDs demandés (les IDs inconnus sont absents)."""
    variants = fetch_variants_by_ids(db, sorted({str(i) for i in ids if i}))
    return {str(v.get("id")): v for v in variants}
