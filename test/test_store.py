"""
Store-backed order lifecycle against the in-process store: per-day order numbers
and the conditional status write under concurrent transitions.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from restaurant_ops.errors import Conflict, EmailTaken, OrderNotFound, StaleState
from restaurant_ops.models import MenuCategory, MenuItem, StaffRecord
from restaurant_ops.order_state import OrderStatus
from restaurant_ops.orders import LineRequest, create_order, place_order, request_order_transition
from restaurant_ops.permissions import Role
from restaurant_ops.store import MemoryStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class InterleavingStore(MemoryStore):
    """Yields to the event loop after every order read, so concurrent callers both read first."""

    async def get_order(self, order_id):
        order = await super().get_order(order_id)
        await asyncio.sleep(0)
        return order


async def _seed(store: MemoryStore) -> MenuItem:
    item = MenuItem(
        id="burger",
        name="Burger",
        price=Decimal("10.00"),
        category=MenuCategory.MAIN_COURSE,
        created_at=T0,
        updated_at=T0,
    )
    return await store.add_menu_item(item)


def test_order_numbers_increase_per_day():
    async def run():
        store = MemoryStore()
        menu = {"burger": await _seed(store)}
        day_two = datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc)
        first = await store.insert_order(create_order(1, [LineRequest("burger", 1)], menu, now=T0))
        second = await store.insert_order(create_order(2, [LineRequest("burger", 1)], menu, now=T0))
        third = await store.insert_order(create_order(3, [LineRequest("burger", 1)], menu, now=day_two))
        return first, second, third

    first, second, third = asyncio.run(run())
    assert first.order_number == "ORD-20240501-001"
    assert second.order_number == "ORD-20240501-002"
    assert third.order_number == "ORD-20240502-001"


def test_place_order_and_transition():
    async def run():
        store = MemoryStore()
        await _seed(store)
        order = await place_order(store, 4, [LineRequest("burger", 3)], customer_name="Ana")
        updated = await request_order_transition(store, order.id, OrderStatus.PREPARING, Role.CHEF)
        return order, updated, await store.get_order(order.id)

    order, updated, stored = asyncio.run(run())
    assert order.total == Decimal("30.00")
    assert order.order_number is not None
    assert updated.status is OrderStatus.PREPARING
    assert stored == updated


def test_transition_unknown_order():
    with pytest.raises(OrderNotFound):
        asyncio.run(request_order_transition(MemoryStore(), "missing", OrderStatus.PREPARING, Role.CHEF))


def test_concurrent_transitions_commit_once():
    async def run():
        store = InterleavingStore()
        await _seed(store)
        order = await place_order(store, 5, [LineRequest("burger", 1)])
        results = await asyncio.gather(
            request_order_transition(store, order.id, OrderStatus.PREPARING, Role.CHEF),
            request_order_transition(store, order.id, OrderStatus.CANCELLED, Role.WAITER),
            return_exceptions=True,
        )
        return results, await store.get_order(order.id)

    results, stored = asyncio.run(run())
    committed = [r for r in results if not isinstance(r, Exception)]
    stale = [r for r in results if isinstance(r, StaleState)]
    assert len(committed) == 1
    assert len(stale) == 1
    assert stale[0].retryable
    assert stored.status is committed[0].status


def test_compare_and_set_requires_expected_status():
    async def run():
        store = MemoryStore()
        await _seed(store)
        order = await place_order(store, 5, [LineRequest("burger", 1)])
        miss = await store.compare_and_set_status(order.id, OrderStatus.READY, OrderStatus.SERVED, T0)
        hit = await store.compare_and_set_status(order.id, OrderStatus.PENDING, OrderStatus.CANCELLED, T0)
        return miss, hit

    miss, hit = asyncio.run(run())
    assert miss is None
    assert hit.status is OrderStatus.CANCELLED


def test_unique_constraints():
    async def run():
        store = MemoryStore()
        await _seed(store)
        with pytest.raises(Conflict):
            await _seed(store)
        record = StaffRecord(id="u1", name="Ana", email="ana@example.com", role=Role.WAITER, created_at=T0, password_hash="x")
        await store.insert_staff(record)
        with pytest.raises(EmailTaken):
            await store.insert_staff(record.model_copy(update={"id": "u2"}))
        return await store.get_staff_by_email("ANA@example.com")

    assert asyncio.run(run()).id == "u1"


def test_list_orders_filters_and_pages():
    async def run():
        store = MemoryStore()
        menu = {"burger": await _seed(store)}
        for table in (1, 2, 1, 1):
            await store.insert_order(create_order(table, [LineRequest("burger", 1)], menu))
        return await store.list_orders(table_number=1, page=2, limit=2)

    rows, total = asyncio.run(run())
    assert total == 3
    assert len(rows) == 1
