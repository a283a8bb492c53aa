from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .validation import OrderStatus


def json_number(value: Decimal):
    # Wire format keeps integral prices as ints (550, not "550" or 550.0).
    d = Decimal(str(value or 0))
    if d == d.to_integral_value():
        return int(d)
    return float(d)


class Product(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    price: Decimal = Field(ge=0)
    category: str = ""
    image: str = ""
    available: bool = True


class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    price: Decimal
    quantity: int = Field(ge=1)
    image: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_payload(self) -> dict:
        return {
            "id": self.product_id,
            "name": self.name,
            "price": json_number(self.price),
            "quantity": self.quantity,
            "image": self.image,
        }


def cart_total(items) -> Decimal:
    return sum((it.line_total for it in items), Decimal("0"))


class Cart(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: tuple[CartItem, ...] = ()
    total: Decimal = Decimal("0")

    @classmethod
    def from_items(cls, items) -> "Cart":
        items = tuple(items)
        return cls(items=items, total=cart_total(items))

    @property
    def is_empty(self) -> bool:
        return not self.items


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    local_key: int
    order_id: str
    customer_name: str
    items: tuple[CartItem, ...]
    total: Decimal
    status: OrderStatus = "pending"
    synced: bool = False
    created_at: datetime

    def to_payload(self) -> dict:
        return {
            "orderId": self.order_id,
            "customerName": self.customer_name,
            "items": [it.to_payload() for it in self.items],
            "total": json_number(self.total),
        }


class QueueEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    payload: dict
    enqueued_at: datetime
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None


AckStatus = Literal["accepted", "stored_in_fallback", "rejected"]


class OrderAck(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    status: AckStatus


class BatchResult(BaseModel):
    """
    Outcome of one batch POST. `delivered` is False when the request itself never got a
    usable response (offline, transport error, non-2xx); in that case every order is
    tagged rejected and stays queued.
    """

    model_config = ConfigDict(frozen=True)

    delivered: bool
    acks: tuple[OrderAck, ...] = ()
    synced_count: int = 0
    stored_in_fallback_count: int = 0
    endpoint: Optional[str] = None
    error: Optional[str] = None

    def ids(self, status: AckStatus) -> list[str]:
        return [a.order_id for a in self.acks if a.status == status]

    @property
    def accepted_ids(self) -> list[str]:
        return self.ids("accepted")


class SyncOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    status: Literal["synced", "queued"]
    endpoint: Optional[str] = None
    error: Optional[str] = None


class CatalogSyncResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    count: int = 0
    source: Literal["remote", "seed", "local"] = "local"
    error: Optional[str] = None


class StatusPushResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: Order
    remote_updated: bool
