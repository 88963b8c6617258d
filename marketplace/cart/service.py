"""
Cas d'usage 'cart': agrège le panier (prix courants + résumé) et gère ses lignes.
"""
import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from marketplace.cart import pricing
from marketplace.cart import repository
from marketplace.catalog import repository as catalog_repo
from marketplace.catalog import service as catalog
from marketplace.errors import InsufficientStockError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _unavailable(row: Dict[str, Any], reason: str) -> Dict[str, Any]:
    return {
        "id": row.get("id"),
        "productId": row.get("product_id"),
        "variantId": row.get("variant_id"),
        "quantity": int(row.get("quantity") or 0),
        "reason": reason,
    }


def price_cart_rows(db: Client, cart_rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Résout produits/variantes des lignes et calcule le résumé.
    - Les lignes dont le produit ou la variante a disparu (ou n'est plus vendable)
      sont exclues du résumé et listées dans unavailableItems.
    """
    products = catalog_repo.get_products_map(db, [r.get("product_id") for r in cart_rows])
    variants = catalog_repo.get_variants_map(db, [r.get("variant_id") for r in cart_rows if r.get("variant_id")])

    items: List[Dict[str, Any]] = []
    unavailable: List[Dict[str, Any]] = []
    for row in cart_rows:
        product_id = str(row.get("product_id") or "")
        variant_id = row.get("variant_id")
        qty = int(row.get("quantity") or 0)
        product = products.get(product_id)
        if not catalog.is_product_available(product):
            unavailable.append(_unavailable(row, "product_unavailable"))
            continue
        variant = None
        if variant_id:
            variant = variants.get(str(variant_id))
            if not catalog.is_variant_available(variant, product_id):
                unavailable.append(_unavailable(row, "variant_unavailable"))
                continue
        if qty <= 0:
            unavailable.append(_unavailable(row, "invalid_quantity"))
            continue
        if not catalog.has_readable_price(product, variant):
            logger.warning("cart.price_cart_rows unreadable price product_id=%s variant_id=%s", product_id, variant_id)
            unavailable.append(_unavailable(row, "price_unavailable"))
            continue
        price = catalog.unit_price(product, variant)
        items.append({
            "id": row.get("id"),
            "productId": product_id,
            "variantId": variant_id,
            "name": product.get("name"),
            "variantName": (variant or {}).get("name"),
            "quantity": qty,
            "unitPrice": price,
            "lineTotal": pricing.line_total(price, qty),
            "stock": catalog.available_stock(product, variant),
        })

    if unavailable:
        logger.info("cart.price_cart_rows dropped=%s", [u["id"] for u in unavailable])
    return {"items": items, "unavailableItems": unavailable, "summary": pricing.summarize(items)}


def get_cart(db: Client, user_id: str) -> Dict[str, Any]:
    """Panier courant de l'utilisateur avec prix résolus et résumé (tout à zéro si vide)."""
    return price_cart_rows(db, repository.list_cart_items(db, user_id))


def _check_sellable(db: Client, product_id: str, variant_id: Optional[str], quantity: int) -> None:
    products = catalog_repo.get_products_map(db, [product_id])
    product = products.get(str(product_id))
    if not catalog.is_product_available(product):
        raise NotFoundError("Produit introuvable ou indisponible", code="product_unavailable")
    variant = None
    if variant_id:
        variant = catalog_repo.get_variants_map(db, [variant_id]).get(str(variant_id))
        if not catalog.is_variant_available(variant, product_id):
            raise NotFoundError("Variante introuvable ou indisponible", code="variant_unavailable")
    if not catalog.has_readable_price(product, variant):
        raise ValidationError("Prix indisponible pour cet article", code="price_unavailable")
    stock = catalog.available_stock(product, variant)
    if stock is not None and stock < quantity:
        raise InsufficientStockError("Stock insuffisant pour cet article", details={"available": stock})


def add_item(db: Client, user_id: str, product_id: str, quantity: int, variant_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Ajoute un article au panier.
    - Fusionne avec la ligne existante (même produit, même variante).
    - Vérifie la disponibilité et le stock pour la quantité cumulée.
    """
    if quantity <= 0:
        raise ValidationError("La quantité doit être au moins 1")
    existing = repository.find_cart_item(db, user_id, product_id, variant_id)
    new_quantity = quantity + (int(existing.get("quantity") or 0) if existing else 0)
    _check_sellable(db, product_id, variant_id, new_quantity)
    if existing:
        return repository.update_cart_item_quantity(db, existing["id"], new_quantity) or {**existing, "quantity": new_quantity}
    return repository.insert_cart_item(db, user_id=user_id, product_id=product_id, variant_id=variant_id, quantity=quantity)


def update_item(db: Client, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
    if quantity <= 0:
        raise ValidationError("La quantité doit être au moins 1")
    item = repository.get_cart_item(db, user_id, item_id)
    if not item:
        raise NotFoundError("Article du panier introuvable")
    _check_sellable(db, item["product_id"], item.get("variant_id"), quantity)
    return repository.update_cart_item_quantity(db, item_id, quantity) or {**item, "quantity": quantity}


def remove_item(db: Client, user_id: str, item_id: str) -> None:
    item = repository.get_cart_item(db, user_id, item_id)
    if not item:
        raise NotFoundError("Article du panier introuvable")
    repository.delete_cart_item(db, item_id)


def clear_cart(db: Client, user_id: str) -> int:
    return repository.clear_cart(db, user_id)
