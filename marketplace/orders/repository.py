"""
Accès aux données pour la feature 'orders' (tables orders, order_items).

Les écritures qui doivent être atomiques passent par des fonctions Postgres
(voir supabase/migrations/0001_checkout.sql):
- create_order_with_items: commande + lignes + nettoyage du panier
- commit_order_stock: décrément unique par commande, ligne par ligne
- cancel_order: annulation et réintégration des seules lignes décrémentées
Les changements d'état utilisent update_order_fields(expected=...) comme compare-and-swap.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client

from marketplace.infra.supabase_client import execute, first, rows

logger = logging.getLogger(__name__)

ORDER_WITH_ITEMS = "*, items:order_items(*)"


# module marketplace.orders.repository
def insert_order_with_items(db: Client, order: Dict[str, Any], items: List[Dict[str, Any]]) -> Optional[dict]:
    """
    Insère la commande et ses lignes en une transaction (RPC create_order_with_items).
    Les lignes du panier correspondant aux articles commandés sont retirées dans la même transaction.
    Retour: la commande avec sa clé 'items'.
    """
    res = execute(
        db.rpc("create_order_with_items", {"p_order": order, "p_items": items}),
        "orders.insert_order_with_items",
    )
    return first(res)


def get_order(db: Client, order_id: str) -> Optional[dict]:
    if not order_id:
        return None
    res = execute(
        db.table("orders").select(ORDER_WITH_ITEMS).eq("id", order_id).limit(1),
        "orders.get_order",
    )
    return first(res)


def list_user_orders(
    db: Client,
    user_id: str,
    status: Optional[str] = None,
    limit: int = 10,
    offset: int = 0,
) -> Tuple[List[dict], int]:
    """Commandes de l'utilisateur (plus récentes d'abord) et nombre total pour la pagination."""
    query = db.table("orders").select(ORDER_WITH_ITEMS, count="exact").eq("user_id", user_id)
    if status:
        query = query.eq("status", status)
    res = execute(
        query.order("created_at", desc=True).range(offset, offset + limit - 1),
        "orders.list_user_orders",
    )
    data = rows(res)
    total = getattr(res, "count", None)
    return data, int(total if total is not None else len(data))


def update_order_fields(
    db: Client,
    order_id: str,
    fields: Dict[str, Any],
    expected: Optional[Dict[str, Any]] = None,
) -> Optional[dict]:
    """
    Met à jour la commande si elle est encore dans l'état attendu.
    - expected: {colonne: valeur} ou {colonne: [valeurs admises]}
    - Retourne la ligne mise à jour, ou None si l'état a changé entre-temps.
    """
    query = db.table("orders").update(fields).eq("id", order_id)
    for column, value in (expected or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            query = query.in_(column, list(value))
        else:
            query = query.eq(column, value)
    return first(execute(query, "orders.update_order_fields"))


def commit_order_stock(db: Client, order_id: str) -> Dict[str, Any]:
    """
    Décrémente le stock des lignes de la commande, une seule fois par commande.
    Retour: {"applied": bool, "shortfalls": [...]} (applied=False si déjà fait).
    """
    res = execute(db.rpc("commit_order_stock", {"p_order_id": order_id}), "orders.commit_order_stock")
    return first(res) or {"applied": False, "shortfalls": []}


def cancel_order(db: Client, order_id: str, expected_status: str) -> Optional[dict]:
    """
    Passe la commande CANCELLED si elle est encore dans expected_status et réintègre,
    dans la même transaction, le stock des lignes effectivement engagées.
    Retour: la commande annulée avec ses lignes, ou None si l'état a changé entre-temps.
    """
    res = execute(
        db.rpc("cancel_order", {"p_order_id": order_id, "p_expected_status": expected_status}),
        "orders.cancel_order",
    )
    return first(res)


def list_abandoned_orders(db: Client, created_before: str, limit: int = 100) -> List[dict]:
    """Commandes encore PENDING, non payées, créées avant la date donnée."""
    res = execute(
        db.table("orders")
        .select("id, order_number, user_id, status, payment_status, created_at")
        .eq("status", "PENDING")
        .in_("payment_status", ["PENDING", "FAILED"])
        .lt("created_at", created_before)
        .order("created_at")
        .limit(limit),
        "orders.list_abandoned_orders",
    )
    return rows(res)
