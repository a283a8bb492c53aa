from decimal import Decimal

import pytest
from pydantic import BaseModel, ValidationError

from pos_sync.app.models import Cart, CartItem, Order, json_number
from pos_sync.app.validation import OrderStatus, can_transition


class _M(BaseModel):
    status: OrderStatus


def test_order_status_normalizes_case():
    assert _M(status=" Ready ").status == "ready"


def test_order_status_rejects_unknown_values():
    with pytest.raises(ValidationError):
        _M(status="shipped")


def test_transition_table():
    assert can_transition("pending", "preparing")
    assert can_transition("pending", "cancelled")
    assert can_transition("ready", "cancelled")
    assert not can_transition("pending", "ready")
    assert not can_transition("completed", "cancelled")
    assert not can_transition("cancelled", "pending")


def test_cart_total_is_sum_of_lines():
    cart = Cart.from_items([
        CartItem(product_id="p1", name="Zinger Burger", price=550, quantity=2),
        CartItem(product_id="p10", name="Pepsi", price=Decimal("120"), quantity=1),
    ])
    assert cart.total == Decimal("1220")


def test_order_payload_uses_wire_names_and_numbers():
    order = Order(
        local_key=1,
        order_id="4821",
        customer_name="Ali",
        items=[{"product_id": "p1", "name": "Zinger Burger", "price": "5.5", "quantity": 2, "image": "b"}],
        total="11",
        created_at="2026-01-01T10:00:00+00:00",
    )
    assert order.to_payload() == {
        "orderId": "4821",
        "customerName": "Ali",
        "items": [{"id": "p1", "name": "Zinger Burger", "price": 5.5, "quantity": 2, "image": "b"}],
        "total": 11,
    }
    assert json_number(Decimal("1220.00")) == 1220
