"""
Async Postgres: menu_items, staff, orders (line items kept as a JSONB document on the order row).
Status changes are a single conditional UPDATE keyed on the status the caller read; a row
count of zero means another writer got there first.
"""
import json
from datetime import datetime

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from restaurant_ops.config import settings
from restaurant_ops.errors import Conflict, EmailTaken
from restaurant_ops.models import MenuCategory, MenuItem, Order, StaffRecord, format_order_number
from restaurant_ops.order_state import OrderStatus
from restaurant_ops.permissions import Role

_pool: asyncpg.Pool | None = None

MENU_ITEM_COLUMNS = ("name", "description", "price", "category", "available", "prep_time", "allergens", "image_url")
STAFF_COLUMNS = ("name", "role", "is_active", "last_login", "password_hash")


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS menu_items (
                id VARCHAR(32) PRIMARY KEY,
                name VARCHAR(100) NOT NULL UNIQUE,
                description VARCHAR(500) NOT NULL DEFAULT '',
                price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
                category VARCHAR(20) NOT NULL,
                available BOOLEAN NOT NULL DEFAULT TRUE,
                prep_time INT NOT NULL DEFAULT 0,
                allergens TEXT[] NOT NULL DEFAULT '{}',
                image_url TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS staff (
                id VARCHAR(32) PRIMARY KEY,
                name VARCHAR(100) NOT NULL,
                email VARCHAR(255) NOT NULL UNIQUE,
                role VARCHAR(20) NOT NULL,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                last_login TIMESTAMPTZ,
                password_hash TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(32) PRIMARY KEY,
                order_number VARCHAR(32) NOT NULL UNIQUE,
                table_number INT NOT NULL CHECK (table_number >= 1),
                lines JSONB NOT NULL,
                status VARCHAR(20) NOT NULL,
                total NUMERIC(12, 2) NOT NULL CHECK (total >= 0),
                customer_name VARCHAR(100),
                created_by VARCHAR(32),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at);")
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_counters (
                day DATE PRIMARY KEY,
                seq INT NOT NULL
            );
        """)


def _row_to_order(row: asyncpg.Record) -> Order:
    data = dict(row)
    data["lines"] = json.loads(data["lines"])
    return Order.model_validate(data)


def _where(filters: dict) -> tuple[str, list]:
    clauses, args = [], []
    for column, value in filters.items():
        if value is None:
            continue
        args.append(value)
        clauses.append(f"{column} = ${len(args)}")
    return (" WHERE " + " AND ".join(clauses)) if clauses else "", args


class PostgresStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # Menu

    async def add_menu_item(self, item: MenuItem) -> MenuItem:
        async with self.pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO menu_items (id, name, description, price, category, available,
                                            prep_time, allergens, image_url, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11);
                    """,
                    item.id, item.name, item.description, item.price, item.category.value,
                    item.available, item.prep_time, item.allergens, item.image_url,
                    item.created_at, item.updated_at,
                )
            except UniqueViolationError:
                raise Conflict(f"Duplicate field value: name ({item.name})") from None
        return item

    async def get_menu_item(self, menu_item_id: str) -> MenuItem | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM menu_items WHERE id = $1;", menu_item_id)
        return MenuItem.model_validate(dict(row)) if row else None

    async def get_menu_items(self, menu_item_ids) -> dict[str, MenuItem]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM menu_items WHERE id = ANY($1::varchar[]);", list(menu_item_ids))
        return {row["id"]: MenuItem.model_validate(dict(row)) for row in rows}

    async def list_menu_items(
        self,
        category: MenuCategory | None = None,
        available: bool | None = None,
        search: str | None = None,
    ) -> list[MenuItem]:
        where, args = _where({"category": category.value if category else None, "available": available})
        if search:
            args.append(f"%{search}%")
            cond = f"(name ILIKE ${len(args)} OR description ILIKE ${len(args)})"
            where = f"{where} AND {cond}" if where else f" WHERE {cond}"
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT * FROM menu_items{where} ORDER BY category, name;", *args)
        return [MenuItem.model_validate(dict(row)) for row in rows]

    async def update_menu_item(self, menu_item_id: str, fields: dict, updated_at: datetime) -> MenuItem | None:
        values = {k: v for k, v in fields.items() if k in MENU_ITEM_COLUMNS}
        if "category" in values:
            values["category"] = MenuCategory(values["category"]).value
        values["updated_at"] = updated_at
        sets = ", ".join(f"{column} = ${i}" for i, column in enumerate(values, start=2))
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    f"UPDATE menu_items SET {sets} WHERE id = $1 RETURNING *;",
                    menu_item_id,
                    *values.values(),
                )
            except UniqueViolationError:
                raise Conflict(f"Duplicate field value: name ({fields.get('name')})") from None
        return MenuItem.model_validate(dict(row)) if row else None

    async def delete_menu_item(self, menu_item_id: str) -> MenuItem | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("DELETE FROM menu_items WHERE id = $1 RETURNING *;", menu_item_id)
        return MenuItem.model_validate(dict(row)) if row else None

    # Orders

    async def insert_order(self, order: Order) -> Order:
        """Insert order and assign the next per-day order number in one transaction."""
        lines_json = json.dumps([line.model_dump(mode="json") for line in order.lines])
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                seq = await conn.fetchval(
                    """
                    INSERT INTO order_counters (day, seq) VALUES ($1, 1)
                    ON CONFLICT (day) DO UPDATE SET seq = order_counters.seq + 1
                    RETURNING seq;
                    """,
                    order.created_at.date(),
                )
                stored = order.model_copy(update={"order_number": format_order_number(order.created_at, seq)})
                await conn.execute(
                    """
                    INSERT INTO orders (id, order_number, table_number, lines, status, total,
                                        customer_name, created_by, created_at, updated_at)
                    VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9, $10);
                    """,
                    stored.id, stored.order_number, stored.table_number, lines_json,
                    stored.status.value, stored.total, stored.customer_name, stored.created_by,
                    stored.created_at, stored.updated_at,
                )
        return stored

    async def get_order(self, order_id: str) -> Order | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        return _row_to_order(row) if row else None

    async def list_orders(
        self,
        status: OrderStatus | None = None,
        table_number: int | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        where, args = _where({"status": status.value if status else None, "table_number": table_number})
        n = len(args)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT * FROM orders{where} ORDER BY created_at DESC LIMIT ${n + 1} OFFSET ${n + 2};",
                *args, limit, (page - 1) * limit,
            )
            total = await conn.fetchval(f"SELECT COUNT(*) FROM orders{where};", *args)
        return [_row_to_order(row) for row in rows], total

    async def compare_and_set_status(
        self,
        order_id: str,
        expected: OrderStatus,
        new_status: OrderStatus,
        updated_at: datetime,
    ) -> Order | None:
        """Write new_status only if the row is still in expected. None if it is not."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE orders SET status = $3, updated_at = $4
                WHERE id = $1 AND status = $2
                RETURNING *;
                """,
                order_id,
                expected.value,
                new_status.value,
                updated_at,
            )
        return _row_to_order(row) if row else None

    # Staff

    async def insert_staff(self, record: StaffRecord) -> StaffRecord:
        async with self.pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO staff (id, name, email, role, is_active, last_login, password_hash, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8);
                    """,
                    record.id, record.name, record.email, record.role.value, record.is_active,
                    record.last_login, record.password_hash, record.created_at,
                )
            except UniqueViolationError:
                raise EmailTaken() from None
        return record

    async def get_staff(self, staff_id: str) -> StaffRecord | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM staff WHERE id = $1;", staff_id)
        return StaffRecord.model_validate(dict(row)) if row else None

    async def get_staff_by_email(self, email: str) -> StaffRecord | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM staff WHERE email = $1;", email.lower())
        return StaffRecord.model_validate(dict(row)) if row else None

    async def list_staff(
        self,
        role: Role | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[StaffRecord], int]:
        where, args = _where({"role": role.value if role else None, "is_active": is_active})
        n = len(args)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT * FROM staff{where} ORDER BY created_at DESC LIMIT ${n + 1} OFFSET ${n + 2};",
                *args, limit, (page - 1) * limit,
            )
            total = await conn.fetchval(f"SELECT COUNT(*) FROM staff{where};", *args)
        return [StaffRecord.model_validate(dict(row)) for row in rows], total

    async def update_staff(self, staff_id: str, **fields) -> StaffRecord | None:
        values = {k: (v.value if isinstance(v, Role) else v) for k, v in fields.items() if k in STAFF_COLUMNS}
        if not values:
            return await self.get_staff(staff_id)
        sets = ", ".join(f"{column} = ${i}" for i, column in enumerate(values, start=2))
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE staff SET {sets} WHERE id = $1 RETURNING *;",
                staff_id,
                *values.values(),
            )
        return StaffRecord.model_validate(dict(row)) if row else None
