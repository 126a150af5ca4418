"""
Store selection and the in-process store.

Both backends expose the same async methods; routes and the order lifecycle only
talk to whatever get_store() returns. STORE_BACKEND=memory keeps everything in
this process (tests, local runs); postgres is the durable backend in db.py.
"""
import asyncio
from datetime import date, datetime
from typing import Any

from restaurant_ops.config import settings
from restaurant_ops.db import PostgresStore, close_pool, get_pool, init_schema
from restaurant_ops.errors import Conflict, EmailTaken
from restaurant_ops.models import MenuCategory, MenuItem, Order, StaffRecord, format_order_number
from restaurant_ops.order_state import OrderStatus
from restaurant_ops.permissions import Role

_store: Any = None


def _page(rows: list, page: int, limit: int) -> list:
    start = (page - 1) * limit
    return rows[start:start + limit]


class MemoryStore:
    def __init__(self) -> None:
        self._menu: dict[str, MenuItem] = {}
        self._orders: dict[str, Order] = {}
        self._staff: dict[str, StaffRecord] = {}
        self._order_seq: dict[date, int] = {}
        self._lock = asyncio.Lock()

    # Menu

    async def add_menu_item(self, item: MenuItem) -> MenuItem:
        async with self._lock:
            if any(m.name == item.name for m in self._menu.values()):
                raise Conflict(f"Duplicate field value: name ({item.name})")
            self._menu[item.id] = item
        return item

    async def get_menu_item(self, menu_item_id: str) -> MenuItem | None:
        return self._menu.get(menu_item_id)

    async def get_menu_items(self, menu_item_ids) -> dict[str, MenuItem]:
        return {i: self._menu[i] for i in menu_item_ids if i in self._menu}

    async def list_menu_items(
        self,
        category: MenuCategory | None = None,
        available: bool | None = None,
        search: str | None = None,
    ) -> list[MenuItem]:
        items = list(self._menu.values())
        if category is not None:
            items = [m for m in items if m.category == category]
        if available is not None:
            items = [m for m in items if m.available == available]
        if search:
            needle = search.lower()
            items = [m for m in items if needle in m.name.lower() or needle in m.description.lower()]
        return sorted(items, key=lambda m: (m.category.value, m.name))

    async def update_menu_item(self, menu_item_id: str, fields: dict, updated_at: datetime) -> MenuItem | None:
        async with self._lock:
            current = self._menu.get(menu_item_id)
            if current is None:
                return None
            name = fields.get("name")
            if name and any(m.name == name and m.id != menu_item_id for m in self._menu.values()):
                raise Conflict(f"Duplicate field value: name ({name})")
            updated = MenuItem.model_validate({**current.model_dump(), **fields, "updated_at": updated_at})
            self._menu[menu_item_id] = updated
        return updated

    async def delete_menu_item(self, menu_item_id: str) -> MenuItem | None:
        async with self._lock:
            return self._menu.pop(menu_item_id, None)

    # Orders

    async def insert_order(self, order: Order) -> Order:
        async with self._lock:
            day = order.created_at.date()
            seq = self._order_seq.get(day, 0) + 1
            self._order_seq[day] = seq
            stored = order.model_copy(update={"order_number": format_order_number(order.created_at, seq)})
            self._orders[stored.id] = stored
        return stored

    async def get_order(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    async def list_orders(
        self,
        status: OrderStatus | None = None,
        table_number: int | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        rows = list(self._orders.values())
        if status is not None:
            rows = [o for o in rows if o.status == status]
        if table_number is not None:
            rows = [o for o in rows if o.table_number == table_number]
        rows.sort(key=lambda o: o.created_at, reverse=True)
        return _page(rows, page, limit), len(rows)

    async def compare_and_set_status(
        self,
        order_id: str,
        expected: OrderStatus,
        new_status: OrderStatus,
        updated_at: datetime,
    ) -> Order | None:
        """Write new_status only if the order is still in expected. None if it is not."""
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None or current.status != expected:
                return None
            updated = current.model_copy(update={"status": new_status, "updated_at": updated_at})
            self._orders[order_id] = updated
        return updated

    # Staff

    async def insert_staff(self, record: StaffRecord) -> StaffRecord:
        async with self._lock:
            if any(s.email == record.email for s in self._staff.values()):
                raise EmailTaken()
            self._staff[record.id] = record
        return record

    async def get_staff(self, staff_id: str) -> StaffRecord | None:
        return self._staff.get(staff_id)

    async def get_staff_by_email(self, email: str) -> StaffRecord | None:
        email = email.lower()
        return next((s for s in self._staff.values() if s.email == email), None)

    async def list_staff(
        self,
        role: Role | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[StaffRecord], int]:
        rows = list(self._staff.values())
        if role is not None:
            rows = [s for s in rows if s.role == role]
        if is_active is not None:
            rows = [s for s in rows if s.is_active == is_active]
        rows.sort(key=lambda s: s.created_at, reverse=True)
        return _page(rows, page, limit), len(rows)

    async def update_staff(self, staff_id: str, **fields) -> StaffRecord | None:
        async with self._lock:
            current = self._staff.get(staff_id)
            if current is None:
                return None
            updated = current.model_copy(update=fields)
            self._staff[staff_id] = updated
        return updated


async def get_store():
    global _store
    if _store is None:
        if settings.store_backend == "memory":
            _store = MemoryStore()
        else:
            pool = await get_pool()
            await init_schema(pool)
            _store = PostgresStore(pool)
    return _store


async def close_store() -> None:
    global _store
    if _store is not None and settings.store_backend == "postgres":
        await close_pool()
    _store = None
