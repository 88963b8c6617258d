# module marketplace.orders.models
"""Vocabulaire des commandes et paiements, et modèles de requête du checkout.
- Enums de statut partagés par orders, payments et reconciliation.
- Modèles pydantic des corps JSON (clés camelCase côté frontend).
- Machine à états administrateur des commandes.
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderPaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCESSFUL.value, PaymentStatus.FAILED.value})

# Annulation possible tant que la commande n'est pas expédiée
CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING.value, OrderStatus.PROCESSING.value})

# Transitions autorisées à un administrateur.
# PENDING -> PROCESSING est réservé au rapprochement des paiements.
ADMIN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING.value: frozenset({OrderStatus.CANCELLED.value}),
    OrderStatus.PROCESSING.value: frozenset({OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value}),
    OrderStatus.SHIPPED.value: frozenset({OrderStatus.DELIVERED.value}),
    OrderStatus.DELIVERED.value: frozenset(),
    OrderStatus.CANCELLED.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ADMIN_TRANSITIONS.get(str(current), frozenset())


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemRequest(_CamelModel):
    product_id: str = Field(min_length=1)
    variant_id: Optional[str] = None
    quantity: int = Field(ge=1)


class CreateOrderRequest(_CamelModel):
    address_id: str = Field(min_length=1)
    payment_method: PaymentMethod
    items: List[OrderItemRequest] = Field(min_length=1)
    notes: Optional[str] = Field(default=None, max_length=1000)


class InitializePaymentRequest(_CamelModel):
    payment_method: Optional[PaymentMethod] = None
    redirect_url: Optional[str] = None


class VerifyPaymentRequest(_CamelModel):
    tx_ref: str = Field(min_length=1)


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus
