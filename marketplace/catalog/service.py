"""
Règles catalogue partagées par le panier et l'assemblage de commande.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from marketplace.cart.pricing import to_money

APPROVED = "APPROVED"


def is_product_available(product: Optional[Dict[str, Any]]) -> bool:
    """Un produit est vendable s'il existe, est actif et approuvé."""
    if not product:
        return False
    return bool(product.get("is_active")) and str(product.get("status") or "").upper() == APPROVED


def is_variant_available(variant: Optional[Dict[str, Any]], product_id: str) -> bool:
    if not variant:
        return False
    return bool(variant.get("is_active")) and str(variant.get("product_id")) == str(product_id)


def unit_price(product: Dict[str, Any], variant: Optional[Dict[str, Any]] = None) -> Decimal:
    """Prix unitaire courant: prix de la variante si présente, sinon prix de base du produit."""
    if variant is not None and variant.get("price") is not None:
        return to_money(variant.get("price"))
    return to_money(product.get("base_price"))


def has_readable_price(product: Dict[str, Any], variant: Optional[Dict[str, Any]] = None) -> bool:
    """Faux si le prix catalogue est illisible: la ligne ne doit pas être vendue à 0."""
    try:
        unit_price(product, variant)
    except ValueError:
        return False
    return True


def available_stock(product: Dict[str, Any], variant: Optional[Dict[str, Any]] = None) -> Optional[int]:
    """Stock disponible, ou None si le produit ne suit pas de stock (colonne nulle)."""
    source = variant if variant is not None else product
    stock = source.get("stock")
    if stock is None:
        return None
    return int(stock)
