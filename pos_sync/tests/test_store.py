import asyncio
import random
from decimal import Decimal

import pytest

from pos_sync.app.errors import EmptyCartError, InvalidTransitionError, NotFoundError, StorageError
from pos_sync.app.order_ids import OrderIdAllocator
from pos_sync.app.store import LocalStore
from pos_sync.tests.fakes import MENU


async def _store(db_path, **kwargs) -> LocalStore:
    store = LocalStore(db_path, **kwargs)
    await store.init()
    await store.put_products(MENU)
    return store


class _FixedRng:
    def __init__(self, values):
        self.values = list(values)

    def randint(self, _low, _high):
        return self.values.pop(0) if len(self.values) > 1 else self.values[0]


def test_cart_total_tracks_every_mutation(db_path):
    rnd = random.Random(7)
    prices = {p["id"]: Decimal(str(p["price"])) for p in MENU}

    async def scenario():
        store = await _store(db_path)
        for _ in range(60):
            pid = rnd.choice(list(prices))
            if rnd.random() < 0.6:
                cart = await store.add_item(pid, rnd.randint(1, 3))
            else:
                cart = await store.set_item_quantity(pid, rnd.randint(-1, 4))
            assert cart.total == sum((it.price * it.quantity for it in cart.items), Decimal("0"))
            assert all(it.quantity >= 1 for it in cart.items)
            assert cart == await store.get_cart()

    asyncio.run(scenario())


def test_add_item_merges_lines_and_quantity_zero_removes(db_path):
    async def scenario():
        store = await _store(db_path)
        await store.add_item("p1")
        cart = await store.add_item("p1", 2)
        assert [(it.product_id, it.quantity) for it in cart.items] == [("p1", 3)]

        cart = await store.add_item("p10")
        assert [it.product_id for it in cart.items] == ["p1", "p10"]

        cart = await store.set_item_quantity("p1", 0)
        assert [it.product_id for it in cart.items] == ["p10"]
        assert cart.total == Decimal("120")

        # Lines that are not in the cart are left alone.
        cart = await store.set_item_quantity("p8", 5)
        assert [it.product_id for it in cart.items] == ["p10"]

    asyncio.run(scenario())


def test_add_item_rejects_unknown_product_and_bad_quantity(db_path):
    async def scenario():
        store = await _store(db_path)
        with pytest.raises(NotFoundError):
            await store.add_item("nope")
        with pytest.raises(ValueError):
            await store.add_item("p1", 0)
        assert (await store.get_cart()).is_empty

    asyncio.run(scenario())


def test_commit_order_snapshots_and_clears_cart(db_path):
    async def scenario():
        store = await _store(db_path)
        await store.add_item("p1", 2)
        before = await store.add_item("p10", 1)
        assert before.total == Decimal("1220")

        order = await store.commit_order("Ali")
        assert order.total == Decimal("1220")
        assert order.status == "pending"
        assert order.synced is False
        assert order.customer_name == "Ali"
        assert order.items == before.items
        assert len(order.order_id) == 4 and order.order_id.isdigit()

        cart = await store.get_cart()
        assert cart.items == () and cart.total == Decimal("0")
        assert await store.get_order(order.local_key) == order

    asyncio.run(scenario())


def test_commit_order_on_empty_cart_fails_and_leaves_cart(db_path):
    async def scenario():
        store = await _store(db_path)
        with pytest.raises(EmptyCartError):
            await store.commit_order("Ali")
        assert (await store.get_cart()).is_empty
        assert await store.list_orders() == []

    asyncio.run(scenario())


def test_commit_order_failure_keeps_cart_and_writes_no_order(db_path):
    # An allocator that never consults the index: the second commit collides on the
    # UNIQUE order_id column inside the commit transaction.
    async def never_exists(_order_id):
        return False

    async def scenario():
        allocator = OrderIdAllocator(never_exists, rng=_FixedRng([4242]))
        store = await _store(db_path, allocator=allocator)
        await store.add_item("p1")
        await store.commit_order("first")

        cart = await store.add_item("p8", 2)
        with pytest.raises(StorageError):
            await store.commit_order("second")
        assert await store.get_cart() == cart
        assert [o.customer_name for o in await store.list_orders()] == ["first"]

    asyncio.run(scenario())


def test_commit_order_retries_colliding_ids(db_path):
    async def scenario():
        store = await _store(db_path)
        store.allocator = OrderIdAllocator(store.order_id_exists, rng=_FixedRng([1111, 1111, 2222]))
        await store.add_item("p1")
        first = await store.commit_order("a")
        await store.add_item("p1")
        second = await store.commit_order("b")
        assert (first.order_id, second.order_id) == ("1111", "2222")

    asyncio.run(scenario())


def test_list_orders_newest_first(db_path):
    async def scenario():
        store = await _store(db_path)
        names = ["a", "b", "c"]
        for n in names:
            await store.add_item("p8")
            await store.commit_order(n)
        assert [o.customer_name for o in await store.list_orders()] == ["c", "b", "a"]
        assert [o.customer_name for o in await store.list_unsynced_orders()] == ["a", "b", "c"]

    asyncio.run(scenario())


def test_order_status_moves_forward_only(db_path):
    async def scenario():
        store = await _store(db_path)
        await store.add_item("p1")
        order = await store.commit_order("Ali")
        oid = order.order_id

        with pytest.raises(InvalidTransitionError):
            await store.set_order_status(oid, "ready")
        assert (await store.set_order_status(oid, "PREPARING")).status == "preparing"
        assert (await store.set_order_status(oid, "ready")).status == "ready"
        assert (await store.set_order_status(oid, "completed")).status == "completed"
        with pytest.raises(InvalidTransitionError):
            await store.set_order_status(oid, "cancelled")
        with pytest.raises(InvalidTransitionError):
            await store.set_order_status(oid, "pending")

        # Items and total never change with status.
        final = await store.get_order_by_order_id(oid)
        assert final.items == order.items and final.total == order.total

    asyncio.run(scenario())


def test_cancel_reachable_from_ready_and_unknown_order(db_path):
    async def scenario():
        store = await _store(db_path)
        await store.add_item("p1")
        order = await store.commit_order("Ali")
        await store.set_order_status(order.order_id, "preparing")
        await store.set_order_status(order.order_id, "ready")
        assert (await store.set_order_status(order.order_id, "cancelled")).status == "cancelled"

        with pytest.raises(NotFoundError):
            await store.set_order_status("0000", "preparing")
        with pytest.raises(ValueError):
            await store.set_order_status(order.order_id, "shipped")

    asyncio.run(scenario())


def test_mark_synced_is_idempotent(db_path):
    async def scenario():
        store = await _store(db_path)
        await store.add_item("p1")
        order = await store.commit_order("Ali")
        first = await store.mark_synced(order.local_key)
        second = await store.mark_synced(order.local_key)
        assert first.synced is True and second == first
        assert await store.mark_synced(999) is None
        assert await store.list_unsynced_orders() == []
        assert await store.mark_orders_synced([order.order_id]) == 0

    asyncio.run(scenario())


def test_put_products_upserts_and_replaces(db_path):
    async def scenario():
        store = await _store(db_path)
        await store.put_products(MENU)
        assert len(await store.get_products()) == 3

        changed = dict(MENU[0], price=600)
        await store.put_products([changed])
        p1 = await store.get_product("p1")
        assert p1.price == Decimal("600")
        assert len(await store.get_products()) == 3

        await store.put_products([changed], replace=True)
        assert [p.id for p in await store.get_products()] == ["p1"]

    asyncio.run(scenario())


def test_export_then_import_into_fresh_store(db_path, tmp_path):
    async def scenario():
        store = await _store(db_path)
        await store.add_item("p1")
        order = await store.commit_order("Ali")
        await store.add_item("p10", 3)
        data = await store.export_all()

        other = LocalStore(str(tmp_path / "restore.sqlite"))
        await other.init()
        summary = await other.import_all(data)
        assert summary == {"products": 3, "orders": 1, "cart": True}
        restored = await other.get_order_by_order_id(order.order_id)
        assert restored.items == order.items and restored.total == order.total
        assert (await other.get_cart()).total == Decimal("360")

        # Importing again does not duplicate orders.
        assert (await other.import_all(data))["orders"] == 0

    asyncio.run(scenario())


def test_unusable_database_raises_storage_error(tmp_path):
    async def scenario():
        store = LocalStore(str(tmp_path))  # a directory, not a database file
        with pytest.raises(StorageError):
            await store.get_cart()

    asyncio.run(scenario())


def test_commit_order_empty_cart_wins_over_blank_name(db_path):
    async def scenario():
        store = await _store(db_path)
        with pytest.raises(EmptyCartError):
            await store.commit_order("")
        await store.add_item("p1")
        with pytest.raises(ValueError):
            await store.commit_order("  ")
        assert [it.product_id for it in (await store.get_cart()).items] == ["p1"]

    asyncio.run(scenario())
