"""
Calculs de prix purs (pas de DB, pas de passerelle).
Montants en Decimal arrondis au centime (ROUND_HALF_UP).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable

from marketplace import config

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


# module marketplace.cart.pricing
def to_money(value: Any) -> Decimal:
    """
    Convertit un montant (str|int|float|Decimal|None) en Decimal à 2 décimales.
    - Passe par str() pour éviter les artefacts binaires des float.
    - Retourne 0.00 si la valeur est absente (None ou chaîne vide).
    - Lève ValueError si la valeur est illisible ou non finie (NaN, Infinity).
    """
    if value is None or value == "":
        return ZERO
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise ValueError(f"Montant illisible: {value!r}")
        return amount.quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Montant illisible: {value!r}")


def line_total(price: Any, quantity: int) -> Decimal:
    return to_money(to_money(price) * int(quantity))


def compute_tax(subtotal: Decimal, rate: Decimal = None) -> Decimal:
    rate = config.TAX_RATE if rate is None else rate
    return to_money(subtotal * rate)


def compute_shipping(subtotal: Decimal, threshold: Decimal = None, flat_fee: Decimal = None) -> Decimal:
    """
    Frais de livraison:
    - 0 pour un panier vide
    - 0 à partir du seuil de gratuité (inclus)
    - forfait sinon
    """
    threshold = config.FREE_SHIPPING_THRESHOLD if threshold is None else threshold
    flat_fee = config.SHIPPING_FLAT_FEE if flat_fee is None else flat_fee
    if subtotal <= ZERO or subtotal >= threshold:
        return ZERO
    return to_money(flat_fee)


def compute_totals(subtotal: Any, discount: Any = ZERO) -> Dict[str, Decimal]:
    """
    Totaux d'une commande: total = subtotal + tax + shippingCost - discount.
    La remise est bornée au montant dû (jamais de total négatif).
    """
    subtotal = to_money(subtotal)
    tax = compute_tax(subtotal)
    shipping = compute_shipping(subtotal)
    gross = subtotal + tax + shipping
    discount = min(to_money(discount), gross)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shippingCost": shipping,
        "discount": discount,
        "total": to_money(gross - discount),
    }


def summarize(lines: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Résumé panier à partir de lignes {quantity, lineTotal}.
    Retourne {totalItems, subtotal, tax, shippingCost, total}.
    """
    total_items = 0
    subtotal = ZERO
    for line in lines:
        total_items += int(line.get("quantity") or 0)
        subtotal += to_money(line.get("lineTotal"))
    totals = compute_totals(subtotal)
    return {
        "totalItems": total_items,
        "subtotal": totals["subtotal"],
        "tax": totals["tax"],
        "shippingCost": totals["shippingCost"],
        "total": totals["total"],
    }
