"""
Cas d'usage 'orders': assemblage de commande depuis une demande validée, consultation,
annulation et transitions administrateur.
"""
import logging
import math
import secrets
import string
import time
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client

from marketplace.cart import pricing
from marketplace.catalog import repository as catalog_repo
from marketplace.catalog import service as catalog
from marketplace.errors import (
    AuthorizationError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from marketplace.orders import repository
from marketplace.orders.models import (
    CANCELLABLE_STATUSES,
    CreateOrderRequest,
    OrderPaymentStatus,
    OrderStatus,
    can_transition,
)
from marketplace.payments import repository as payments_repo
from marketplace.users import repository as users_repo
from marketplace.utils.dates import iso

logger = logging.getLogger(__name__)

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    """Numéro lisible et unique: ORD-<epoch ms>-<6 caractères majuscules/chiffres>."""
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def _merge_lines(request: CreateOrderRequest) -> List[Tuple[str, Optional[str], int]]:
    """Fusionne les lignes portant sur le même couple (produit, variante), ordre d'apparition conservé."""
    merged: Dict[Tuple[str, Optional[str]], int] = {}
    for item in request.items:
        key = (item.product_id, item.variant_id or None)
        merged[key] = merged.get(key, 0) + item.quantity
    return [(pid, vid, qty) for (pid, vid), qty in merged.items()]


def _check_address(db: Client, user_id: str, address_id: str) -> Dict[str, Any]:
    address = users_repo.get_address(db, address_id)
    if not address:
        raise ValidationError("Adresse de livraison introuvable", code="invalid_address")
    if str(address.get("user_id")) != str(user_id):
        logger.warning("orders.create_order foreign address user_id=%s address_id=%s", user_id, address_id)
        raise AuthorizationError("Cette adresse ne vous appartient pas", code="address_forbidden")
    return address


def _price_lines(db: Client, lines: List[Tuple[str, Optional[str], int]]) -> List[Dict[str, Any]]:
    """
    Résout et contrôle chaque ligne puis fige son prix unitaire courant.
    Toute ligne invalide rejette la commande entière.
    """
    products = catalog_repo.get_products_map(db, [pid for pid, _, _ in lines])
    variants = catalog_repo.get_variants_map(db, [vid for _, vid, _ in lines if vid])

    items: List[Dict[str, Any]] = []
    for product_id, variant_id, qty in lines:
        product = products.get(str(product_id))
        if not catalog.is_product_available(product):
            raise ValidationError(
                "Produit introuvable ou indisponible",
                code="product_unavailable",
                details={"productId": product_id},
            )
        variant = None
        if variant_id:
            variant = variants.get(str(variant_id))
            if not catalog.is_variant_available(variant, product_id):
                raise ValidationError(
                    "Variante introuvable ou indisponible",
                    code="variant_unavailable",
                    details={"productId": product_id, "variantId": variant_id},
                )
        if not catalog.has_readable_price(product, variant):
            logger.warning("orders.create_order unreadable price product_id=%s variant_id=%s", product_id, variant_id)
            raise ValidationError(
                "Prix indisponible pour cet article",
                code="price_unavailable",
                details={"productId": product_id, "variantId": variant_id},
            )
        stock = catalog.available_stock(product, variant)
        if stock is not None and stock < qty:
            raise InsufficientStockError(
                f"Stock insuffisant pour {product.get('name')}",
                details={"productId": product_id, "variantId": variant_id, "available": stock, "requested": qty},
            )
        price = catalog.unit_price(product, variant)
        items.append({
            "product_id": product_id,
            "variant_id": variant_id,
            "product_name": product.get("name"),
            "variant_name": (variant or {}).get("name"),
            "quantity": qty,
            "unit_price": price,
            "total_price": pricing.line_total(price, qty),
        })
    return items


def create_order(db: Client, user_id: str, request: CreateOrderRequest) -> Dict[str, Any]:
    """
    Crée une commande PENDING/PENDING à partir d'une demande validée.
    Étapes:
    - Contrôle l'adresse (existence puis propriété)
    - Contrôle produits, variantes et stock; fige les prix unitaires
    - Calcule sous-total, TVA, livraison et total
    - Persiste commande + lignes en une transaction (aucune commande partielle)
    Le stock n'est pas touché ici: il est engagé au paiement confirmé.
    """
    if not request.items:
        raise ValidationError("La commande doit contenir au moins un article", code="empty_order")

    _check_address(db, user_id, request.address_id)
    items = _price_lines(db, _merge_lines(request))

    subtotal = sum((i["total_price"] for i in items), pricing.ZERO)
    totals = pricing.compute_totals(subtotal)

    order = {
        "order_number": generate_order_number(),
        "user_id": user_id,
        "address_id": request.address_id,
        "payment_method": request.payment_method.value,
        "status": OrderStatus.PENDING.value,
        "payment_status": OrderPaymentStatus.PENDING.value,
        "subtotal": str(totals["subtotal"]),
        "tax": str(totals["tax"]),
        "shipping_cost": str(totals["shippingCost"]),
        "discount": str(totals["discount"]),
        "total_amount": str(totals["total"]),
        "notes": request.notes,
    }
    persisted_items = [
        {**i, "unit_price": str(i["unit_price"]), "total_price": str(i["total_price"])}
        for i in items
    ]

    created = repository.insert_order_with_items(db, order, persisted_items)
    if not created:
        raise PersistenceError("Commande non créée")
    logger.info(
        "orders.create_order user_id=%s order_number=%s total=%s items=%s",
        user_id, order["order_number"], order["total_amount"], len(items),
    )
    return created


def get_owned_order(db: Client, user_id: str, order_id: str) -> Dict[str, Any]:
    """Commande de l'utilisateur, 404 si inconnue et 403 si elle appartient à un autre compte."""
    order = repository.get_order(db, order_id)
    if not order:
        raise NotFoundError("Commande introuvable")
    if str(order.get("user_id")) != str(user_id):
        raise AuthorizationError("Accès refusé à cette commande")
    return order


def get_order_for_user(db: Client, user_id: str, order_id: str) -> Dict[str, Any]:
    """Commande détaillée: lignes et tentatives de paiement."""
    order = get_owned_order(db, user_id, order_id)
    return {**order, "payments": payments_repo.list_order_payments(db, order_id)}


def list_orders(db: Client, user_id: str, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    page = max(1, int(page))
    limit = min(max(1, int(limit)), 100)
    orders, total = repository.list_user_orders(db, user_id, status=status, limit=limit, offset=(page - 1) * limit)
    return {
        "orders": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


def _apply_cancellation(db: Client, order: Dict[str, Any]) -> Dict[str, Any]:
    # annulation et réintégration du stock dans la même transaction
    updated = repository.cancel_order(db, order["id"], order.get("status"))
    if not updated:
        raise InvalidTransitionError("La commande a changé d'état, veuillez réessayer")
    if order.get("payment_status") == OrderPaymentStatus.PAID.value:
        logger.warning("orders.cancel paid order requires refund order_number=%s", order.get("order_number"))
    return updated


def cancel_order(db: Client, user_id: str, order_id: str) -> Dict[str, Any]:
    """Annulation par le client tant que la commande n'est pas expédiée; le stock engagé est réintégré."""
    order = get_owned_order(db, user_id, order_id)
    if order.get("status") not in CANCELLABLE_STATUSES:
        raise InvalidTransitionError("Cette commande ne peut plus être annulée")
    updated = _apply_cancellation(db, order)
    logger.info("orders.cancel_order user_id=%s order_number=%s", user_id, order.get("order_number"))
    return updated


def update_order_status(db: Client, order_id: str, status: str) -> Dict[str, Any]:
    """Transition administrateur (PROCESSING→SHIPPED→DELIVERED, annulation avant expédition)."""
    try:
        status = OrderStatus(status).value
    except ValueError:
        raise ValidationError(f"Statut inconnu: {status}", code="invalid_status")
    order = repository.get_order(db, order_id)
    if not order:
        raise NotFoundError("Commande introuvable")
    current = order.get("status")
    if not can_transition(current, status):
        raise InvalidTransitionError(f"Transition {current} -> {status} non autorisée")
    if status == OrderStatus.CANCELLED.value:
        return _apply_cancellation(db, order)
    updated = repository.update_order_fields(
        db, order_id, {"status": status, "updated_at": iso()}, expected={"status": current}
    )
    if not updated:
        raise InvalidTransitionError("La commande a changé d'état, veuillez réessayer")
    logger.info("orders.update_order_status order_number=%s %s -> %s", order.get("order_number"), current, status)
    return updated
