"""
Order lifecycle: creating orders from menu snapshots and moving them through the
status state machine.

create_order and transition are pure. place_order and request_order_transition
persist through a store; a status change is committed only if the stored status
still equals the status the transition was computed from.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Mapping

from restaurant_ops.errors import (
    EmptyOrder,
    Forbidden,
    IllegalTransition,
    InvalidArgument,
    InvalidQuantity,
    ItemUnavailable,
    MenuItemNotFound,
    OrderNotFound,
    StaleState,
)
from restaurant_ops.models import MenuItem, Order, OrderLine, new_id, utcnow
from restaurant_ops.order_state import OrderStatus, allowed_roles
from restaurant_ops.permissions import Capability, Role, as_role, has_capability


@dataclass(frozen=True)
class LineRequest:
    menu_item_id: str
    quantity: int
    note: str | None = None


def as_status(status: OrderStatus | str) -> OrderStatus:
    try:
        return OrderStatus(status)
    except ValueError:
        raise InvalidArgument(f"Unknown order status: {status!r}") from None


def create_order(
    table_number: int,
    lines: list[LineRequest],
    menu: Mapping[str, MenuItem],
    customer_name: str | None = None,
    created_by: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Build a pending order. Each line snapshots the menu item's current name and
    price; the order total is the sum of line totals.
    """
    if table_number < 1:
        raise InvalidArgument("Table number must be positive")
    if not lines:
        raise EmptyOrder()
    for req in lines:
        if req.quantity < 1:
            raise InvalidQuantity(req.menu_item_id, req.quantity)

    order_lines = []
    for req in lines:
        item = menu.get(req.menu_item_id)
        if item is None:
            raise MenuItemNotFound(req.menu_item_id)
        if not item.available:
            raise ItemUnavailable(item.id, item.name)
        order_lines.append(OrderLine(
            menu_item_id=item.id,
            name=item.name,
            unit_price=item.price,
            quantity=req.quantity,
            line_total=item.price * req.quantity,
            note=req.note,
        ))

    now = now or utcnow()
    return Order(
        id=new_id(),
        order_number=None,
        table_number=table_number,
        lines=tuple(order_lines),
        status=OrderStatus.PENDING,
        total=sum((line.line_total for line in order_lines), Decimal(0)),
        customer_name=customer_name,
        created_at=now,
        updated_at=now,
        created_by=created_by,
    )


def transition(
    order: Order,
    requested_status: OrderStatus | str,
    acting_role: Role | str,
    now: datetime | None = None,
) -> Order:
    """
    Return a copy of order moved to requested_status. Only status and updated_at
    change. Raises IllegalTransition when the move is not an edge of the state
    machine (whoever asks), Forbidden when the role may not make it.
    """
    role = as_role(acting_role)
    requested = as_status(requested_status)
    roles = allowed_roles(order.status, requested)
    if not roles:
        raise IllegalTransition(order.status.value, requested.value)
    if not has_capability(role, Capability.UPDATE_ORDER_STATUS):
        raise Forbidden(f"Role {role.value} cannot update order status")
    if role not in roles:
        raise Forbidden(f"Role {role.value} cannot move an order from {order.status.value} to {requested.value}")
    return order.model_copy(update={"status": requested, "updated_at": now or utcnow()})


async def place_order(
    store,
    table_number: int,
    lines: list[LineRequest],
    customer_name: str | None = None,
    created_by: str | None = None,
) -> Order:
    """Resolve menu items, build the order and insert it. Returns the stored order."""
    menu = await store.get_menu_items({req.menu_item_id for req in lines})
    order = create_order(table_number, lines, menu, customer_name=customer_name, created_by=created_by)
    return await store.insert_order(order)


async def request_order_transition(
    store,
    order_id: str,
    new_status: OrderStatus | str,
    acting_role: Role | str,
) -> Order:
    """
    Read, validate and conditionally commit one status change. Raises StaleState
    if another writer changed the status in between; the caller may refetch and
    reissue once.
    """
    order = await store.get_order(order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    updated = transition(order, new_status, acting_role)
    committed = await store.compare_and_set_status(
        order_id,
        expected=order.status,
        new_status=updated.status,
        updated_at=updated.updated_at,
    )
    if committed is None:
        raise StaleState(order_id, order.status.value)
    return committed
