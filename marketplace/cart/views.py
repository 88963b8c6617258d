# module marketplace.cart.views
"""Endpoints du panier (utilisateur authentifié).
- GET /api/cart: panier avec prix courants et résumé
- POST /api/cart/add, PUT /api/cart/update/{item_id}
- DELETE /api/cart/remove/{item_id}, DELETE /api/cart/clear
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from supabase import Client

from marketplace.cart import service as cart_service
from marketplace.infra.supabase_client import get_db
from marketplace.utils.responses import ok
from marketplace.utils.security import require_user

router = APIRouter(prefix="/api/cart", tags=["Cart API"])


class AddToCartRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    variant_id: Optional[str] = None


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(ge=1)


@router.get("")
def get_cart(user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    return ok(cart_service.get_cart(db, user["id"]), message="Panier récupéré")


@router.post("/add", status_code=201)
def add_to_cart(payload: AddToCartRequest, user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    item = cart_service.add_item(
        db,
        user["id"],
        product_id=payload.product_id,
        quantity=payload.quantity,
        variant_id=payload.variant_id,
    )
    return ok(item, message="Article ajouté au panier", status_code=201)


@router.put("/update/{item_id}")
def update_cart_item(item_id: str, payload: UpdateCartItemRequest, user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    item = cart_service.update_item(db, user["id"], item_id, payload.quantity)
    return ok(item, message="Panier mis à jour")


@router.delete("/remove/{item_id}")
def remove_from_cart(item_id: str, user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    cart_service.remove_item(db, user["id"], item_id)
    return ok(message="Article retiré du panier")


@router.delete("/clear")
def clear_cart(user: Dict[str, Any] = Depends(require_user), db: Client = Depends(get_db)):
    removed = cart_service.clear_cart(db, user["id"])
    return ok({"removed": removed}, message="Panier vidé")
