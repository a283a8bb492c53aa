"""
LocalStore: the client's durable record store and sole authority for local order state.

Every mutation is one read-modify-write unit: it holds the in-process asyncio lock and runs
inside a single SQLite write transaction (BEGIN IMMEDIATE). Callers must not assume
atomicity across two calls.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Optional

from .db import db_connect, init_db, run_db
from .errors import EmptyCartError, InvalidTransitionError, NotFoundError
from .logs import json_log
from .models import Cart, CartItem, Order, Product
from .order_ids import ORDER_ID_MAX_ATTEMPTS, OrderIdAllocator
from .validation import can_transition, _to_lower_str, ORDER_TRANSITIONS

CART_ID = "active"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _items_json(items) -> str:
    return json.dumps([it.model_dump(mode="json") for it in items])


def _row_to_product(r) -> Product:
    return Product(
        id=r["id"],
        name=r["name"],
        price=r["price"],
        category=r["category"],
        image=r["image"],
        available=bool(r["available"]),
    )


def _row_to_order(r) -> Order:
    return Order(
        local_key=r["local_key"],
        order_id=r["order_id"],
        customer_name=r["customer_name"],
        items=json.loads(r["items_json"]),
        total=r["total"],
        status=r["status"],
        synced=bool(r["synced"]),
        created_at=r["created_at"],
    )


def _read_cart(conn) -> Cart:
    row = conn.execute("SELECT items_json FROM local_cart WHERE id = ?", (CART_ID,)).fetchone()
    if not row:
        return Cart()
    return Cart.from_items(CartItem.model_validate(d) for d in json.loads(row["items_json"]))


def _write_cart(conn, items) -> Cart:
    cart = Cart.from_items(items)
    conn.execute(
        """
        INSERT INTO local_cart (id, items_json, total, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          items_json=excluded.items_json,
          total=excluded.total,
          updated_at=excluded.updated_at
        """,
        (CART_ID, _items_json(cart.items), str(cart.total), _now().isoformat()),
    )
    return cart


def _upsert_product(conn, p: Product, updated_at: str):
    conn.execute(
        """
        INSERT INTO local_products (id, name, price, category, image, available, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          name=excluded.name,
          price=excluded.price,
          category=excluded.category,
          image=excluded.image,
          available=excluded.available,
          updated_at=excluded.updated_at
        """,
        (p.id, p.name, str(p.price), p.category, p.image, 1 if p.available else 0, updated_at),
    )


def _get_order_row(conn, order_id: str):
    return conn.execute("SELECT * FROM local_orders WHERE order_id = ?", (order_id,)).fetchone()


class LocalStore:
    def __init__(self, db_path: str, allocator: Optional[OrderIdAllocator] = None,
                 order_id_max_attempts: int = ORDER_ID_MAX_ATTEMPTS):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self.allocator = allocator or OrderIdAllocator(self.order_id_exists, max_attempts=order_id_max_attempts)

    async def init(self):
        await run_db(init_db, self.db_path)

    # ---- catalog ----

    async def put_products(self, products, replace: bool = False) -> list[Product]:
        """
        Upsert products by id (idempotent). replace=True also drops every local product not
        in `products`, turning the call into a whole-catalog replacement.
        """
        items = [p if isinstance(p, Product) else Product.model_validate(p) for p in (products or [])]

        def _tx():
            updated_at = _now().isoformat()
            with db_connect(self.db_path, write=True) as conn:
                for p in items:
                    _upsert_product(conn, p, updated_at)
                if replace:
                    keep = [p.id for p in items]
                    if keep:
                        conn.execute(
                            "DELETE FROM local_products WHERE id NOT IN (%s)" % ",".join(["?"] * len(keep)),
                            tuple(keep),
                        )
                    else:
                        conn.execute("DELETE FROM local_products")

        async with self._lock:
            await run_db(_tx)
        json_log("info", "store.products.saved", count=len(items), replace=replace)
        return items

    async def get_products(self) -> list[Product]:
        def _q():
            with db_connect(self.db_path) as conn:
                rows = conn.execute("SELECT * FROM local_products ORDER BY category, name, id").fetchall()
                return [_row_to_product(r) for r in rows]

        return await run_db(_q)

    async def get_product(self, product_id: str) -> Product:
        def _q():
            with db_connect(self.db_path) as conn:
                return conn.execute("SELECT * FROM local_products WHERE id = ?", (product_id,)).fetchone()

        row = await run_db(_q)
        if not row:
            raise NotFoundError("product", product_id)
        return _row_to_product(row)

    # ---- cart ----

    async def get_cart(self) -> Cart:
        def _q():
            with db_connect(self.db_path) as conn:
                return _read_cart(conn)

        return await run_db(_q)

    async def add_item(self, product_id: str, quantity: int = 1) -> Cart:
        quantity = int(quantity)
        if quantity < 1:
            raise ValueError("quantity must be >= 1")

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                prow = conn.execute("SELECT * FROM local_products WHERE id = ?", (product_id,)).fetchone()
                if not prow:
                    raise NotFoundError("product", product_id)
                product = _row_to_product(prow)
                items = list(_read_cart(conn).items)
                for i, it in enumerate(items):
                    if it.product_id == product.id:
                        items[i] = it.model_copy(update={"quantity": it.quantity + quantity})
                        break
                else:
                    items.append(CartItem(
                        product_id=product.id,
                        name=product.name,
                        price=product.price,
                        quantity=quantity,
                        image=product.image,
                    ))
                return _write_cart(conn, items)

        async with self._lock:
            return await run_db(_tx)

    async def set_item_quantity(self, product_id: str, quantity: int) -> Cart:
        """Overwrite a line's quantity; quantity <= 0 removes the line. Unknown lines are ignored."""
        quantity = int(quantity)

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                items = list(_read_cart(conn).items)
                if quantity <= 0:
                    items = [it for it in items if it.product_id != product_id]
                else:
                    items = [
                        it.model_copy(update={"quantity": quantity}) if it.product_id == product_id else it
                        for it in items
                    ]
                return _write_cart(conn, items)

        async with self._lock:
            return await run_db(_tx)

    async def clear_cart(self) -> Cart:
        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                return _write_cart(conn, [])

        async with self._lock:
            return await run_db(_tx)

    # ---- orders ----

    async def order_id_exists(self, order_id: str) -> bool:
        def _q():
            with db_connect(self.db_path) as conn:
                row = conn.execute("SELECT 1 FROM local_orders WHERE order_id = ? LIMIT 1", (order_id,)).fetchone()
                return row is not None

        return await run_db(_q)

    async def commit_order(self, customer_name: str) -> Order:
        """
        Snapshot the cart into a pending, unsynced Order and clear the cart.

        The insert and the cart reset share one write transaction, so no reader ever sees a
        cleared cart without its Order, or an Order whose cart is still populated.
        """
        name = (customer_name or "").strip()

        def _tx(order_id: str):
            with db_connect(self.db_path, write=True) as conn:
                cart = _read_cart(conn)
                if cart.is_empty:
                    raise EmptyCartError()
                created_at = _now().isoformat()
                cur = conn.execute(
                    """
                    INSERT INTO local_orders
                      (order_id, customer_name, items_json, total, status, synced, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 'pending', 0, ?, ?)
                    """,
                    (order_id, name, _items_json(cart.items), str(cart.total), created_at, created_at),
                )
                local_key = cur.lastrowid
                _write_cart(conn, [])
                return _row_to_order(
                    conn.execute("SELECT * FROM local_orders WHERE local_key = ?", (local_key,)).fetchone()
                )

        async with self._lock:
            cart = await self.get_cart()
            if cart.is_empty:
                raise EmptyCartError()
            if not name:
                raise ValueError("customer_name is required")
            order_id = await self.allocator.allocate()
            try:
                order = await run_db(_tx, order_id)
            finally:
                self.allocator.release(order_id)
        json_log(
            "info",
            "store.order.committed",
            order_id=order.order_id,
            local_key=order.local_key,
            total=str(order.total),
            lines=len(order.items),
        )
        return order

    async def list_orders(self) -> list[Order]:
        def _q():
            with db_connect(self.db_path) as conn:
                rows = conn.execute("SELECT * FROM local_orders ORDER BY created_at DESC, local_key DESC").fetchall()
                return [_row_to_order(r) for r in rows]

        return await run_db(_q)

    async def list_unsynced_orders(self) -> list[Order]:
        def _q():
            with db_connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM local_orders WHERE synced = 0 ORDER BY created_at ASC, local_key ASC"
                ).fetchall()
                return [_row_to_order(r) for r in rows]

        return await run_db(_q)

    async def get_order(self, local_key: int) -> Order:
        def _q():
            with db_connect(self.db_path) as conn:
                return conn.execute("SELECT * FROM local_orders WHERE local_key = ?", (int(local_key),)).fetchone()

        row = await run_db(_q)
        if not row:
            raise NotFoundError("order", local_key)
        return _row_to_order(row)

    async def get_order_by_order_id(self, order_id: str) -> Order:
        def _q():
            with db_connect(self.db_path) as conn:
                return _get_order_row(conn, str(order_id))

        row = await run_db(_q)
        if not row:
            raise NotFoundError("order", order_id)
        return _row_to_order(row)

    async def set_order_status(self, order_id: str, status: str) -> Order:
        target = _to_lower_str(status)
        if target not in ORDER_TRANSITIONS:
            raise ValueError(f"unknown order status: {status}")

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                row = _get_order_row(conn, str(order_id))
                if not row:
                    raise NotFoundError("order", order_id)
                current = row["status"]
                if current == target:
                    return _row_to_order(row), False
                if not can_transition(current, target):
                    raise InvalidTransitionError(str(order_id), current, target)
                conn.execute(
                    "UPDATE local_orders SET status = ?, updated_at = ? WHERE local_key = ?",
                    (target, _now().isoformat(), row["local_key"]),
                )
                return _row_to_order(_get_order_row(conn, str(order_id))), True

        async with self._lock:
            order, changed = await run_db(_tx)
        if changed:
            json_log("info", "store.order.status", order_id=order.order_id, status=order.status)
        return order

    async def mark_synced(self, local_key: int) -> Optional[Order]:
        """Flip synced 0 -> 1. Idempotent; an unknown key is a no-op returning None."""

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                conn.execute(
                    "UPDATE local_orders SET synced = 1, updated_at = ? WHERE local_key = ? AND synced = 0",
                    (_now().isoformat(), int(local_key)),
                )
                row = conn.execute("SELECT * FROM local_orders WHERE local_key = ?", (int(local_key),)).fetchone()
                return _row_to_order(row) if row else None

        async with self._lock:
            return await run_db(_tx)

    async def mark_orders_synced(self, order_ids) -> int:
        """Batch variant keyed by order_id (the id the server acknowledges). Returns rows flipped."""
        ids = [str(i) for i in (order_ids or []) if str(i or "").strip()]
        if not ids:
            return 0

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                cur = conn.execute(
                    "UPDATE local_orders SET synced = 1, updated_at = ? WHERE synced = 0 AND order_id IN (%s)"
                    % ",".join(["?"] * len(ids)),
                    (_now().isoformat(), *ids),
                )
                return cur.rowcount

        async with self._lock:
            return await run_db(_tx)

    # ---- backup ----

    async def export_all(self) -> dict:
        def _q():
            with db_connect(self.db_path) as conn:
                products = [_row_to_product(r) for r in conn.execute("SELECT * FROM local_products ORDER BY id")]
                orders = [_row_to_order(r) for r in conn.execute("SELECT * FROM local_orders ORDER BY local_key")]
                cart = _read_cart(conn)
                return products, orders, cart

        products, orders, cart = await run_db(_q)
        return {
            "products": [p.model_dump(mode="json") for p in products],
            "orders": [o.model_dump(mode="json") for o in orders],
            "cart": cart.model_dump(mode="json"),
            "exported_at": _now().isoformat(),
        }

    async def import_all(self, data: dict) -> dict:
        """
        Restore a backup produced by export_all(). Products are upserted, orders missing
        locally are inserted (existing local orders win), and the cart is replaced when the
        backup carries one.
        """
        data = data or {}
        products = [Product.model_validate(p) for p in (data.get("products") or [])]
        orders = [Order.model_validate(o) for o in (data.get("orders") or [])]
        cart = Cart.model_validate(data["cart"]) if data.get("cart") is not None else None

        def _tx():
            inserted = 0
            updated_at = _now().isoformat()
            with db_connect(self.db_path, write=True) as conn:
                for p in products:
                    _upsert_product(conn, p, updated_at)
                for o in orders:
                    cur = conn.execute(
                        """
                        INSERT INTO local_orders
                          (order_id, customer_name, items_json, total, status, synced, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(order_id) DO NOTHING
                        """,
                        (
                            o.order_id,
                            o.customer_name,
                            _items_json(o.items),
                            str(o.total),
                            o.status,
                            1 if o.synced else 0,
                            o.created_at.isoformat(),
                            updated_at,
                        ),
                    )
                    inserted += cur.rowcount
                if cart is not None:
                    _write_cart(conn, cart.items)
            return inserted

        async with self._lock:
            inserted = await run_db(_tx)
        json_log("info", "store.import", products=len(products), orders_inserted=inserted)
        return {"products": len(products), "orders": inserted, "cart": cart is not None}
