"""
Order lifecycle state machine. Valid transitions and the roles allowed to make them.
"""
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from restaurant_ops.permissions import Role


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


# (current status, requested status) -> roles allowed to make that move
VALID_TRANSITIONS: Mapping[tuple[OrderStatus, OrderStatus], frozenset[Role]] = MappingProxyType({
    (OrderStatus.PENDING, OrderStatus.PREPARING): frozenset({Role.CHEF, Role.MANAGER, Role.OWNER}),
    (OrderStatus.PENDING, OrderStatus.CANCELLED): frozenset({Role.WAITER, Role.MANAGER, Role.OWNER}),
    (OrderStatus.PREPARING, OrderStatus.READY): frozenset({Role.CHEF, Role.MANAGER, Role.OWNER}),
    (OrderStatus.READY, OrderStatus.SERVED): frozenset({Role.WAITER, Role.MANAGER, Role.OWNER}),
})

TERMINAL_STATUSES = frozenset({OrderStatus.SERVED, OrderStatus.CANCELLED})


def is_valid_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    """True if requested is allowed after current, for some role."""
    return (current, requested) in VALID_TRANSITIONS


def allowed_roles(current: OrderStatus, requested: OrderStatus) -> frozenset[Role]:
    return VALID_TRANSITIONS.get((current, requested), frozenset())


def next_statuses(current: OrderStatus) -> list[OrderStatus]:
    return [to for (frm, to) in VALID_TRANSITIONS if frm == current]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def previous_status(status: OrderStatus) -> OrderStatus | None:
    """The single status an order must be in to reach status, None for pending."""
    return next((frm for (frm, to) in VALID_TRANSITIONS if to == status), None)
