"""
Role-based access control. One role -> capability table drives API authorization,
feature gating and navigation filtering. All tables are built once at import and
are read-only.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from restaurant_ops.errors import InvalidArgument, UnknownRole


class Role(str, Enum):
    OWNER = "owner"
    MANAGER = "manager"
    CHEF = "chef"
    WAITER = "waiter"


class Capability(str, Enum):
    VIEW_ORDERS = "VIEW_ORDERS"
    UPDATE_ORDER_STATUS = "UPDATE_ORDER_STATUS"
    MANAGE_MENU = "MANAGE_MENU"
    VIEW_REPORTS = "VIEW_REPORTS"
    MANAGE_STAFF = "MANAGE_STAFF"
    PROCESS_PAYMENTS = "PROCESS_PAYMENTS"
    VIEW_CUSTOMER_DATA = "VIEW_CUSTOMER_DATA"


class AccessDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


ROLE_CAPABILITIES: Mapping[Role, frozenset[Capability]] = MappingProxyType({
    Role.OWNER: frozenset(Capability),
    Role.MANAGER: frozenset({
        Capability.VIEW_ORDERS,
        Capability.UPDATE_ORDER_STATUS,
        Capability.VIEW_REPORTS,
        Capability.PROCESS_PAYMENTS,
        Capability.VIEW_CUSTOMER_DATA,
    }),
    Role.CHEF: frozenset({
        Capability.VIEW_ORDERS,
        Capability.UPDATE_ORDER_STATUS,
    }),
    Role.WAITER: frozenset({
        Capability.VIEW_ORDERS,
        Capability.UPDATE_ORDER_STATUS,
        Capability.VIEW_CUSTOMER_DATA,
    }),
})

# Feature -> capabilities, any one of which grants access. Ordered.
FEATURE_CAPABILITIES: Mapping[str, tuple[Capability, ...]] = MappingProxyType({
    "dashboard": (Capability.VIEW_ORDERS, Capability.VIEW_REPORTS),
    "orders": (Capability.VIEW_ORDERS,),
    "orderManagement": (Capability.UPDATE_ORDER_STATUS,),
    "menu": (Capability.VIEW_ORDERS,),  # everyone who sees orders sees the menu
    "menuManagement": (Capability.MANAGE_MENU,),
    "staff": (Capability.MANAGE_STAFF,),
    "reports": (Capability.VIEW_REPORTS,),
    "payments": (Capability.PROCESS_PAYMENTS,),
    "customers": (Capability.VIEW_CUSTOMER_DATA,),
})

# Who may manage (create, re-role, deactivate) accounts of which role.
ROLE_HIERARCHY: Mapping[Role, frozenset[Role]] = MappingProxyType({
    Role.OWNER: frozenset(Role),
    Role.MANAGER: frozenset({Role.CHEF, Role.WAITER}),
    Role.CHEF: frozenset(),
    Role.WAITER: frozenset(),
})

# Roles holding the create-order right (in addition to VIEW_ORDERS).
ORDER_CREATOR_ROLES: frozenset[Role] = frozenset({Role.WAITER, Role.MANAGER, Role.OWNER})


@dataclass(frozen=True)
class NavigationItem:
    name: str
    href: str
    icon: str
    capability: Capability
    roles: frozenset[Role]


NAVIGATION_ITEMS: tuple[NavigationItem, ...] = (
    NavigationItem("Dashboard", "/dashboard", "📊", Capability.VIEW_ORDERS, frozenset(Role)),
    NavigationItem("Orders", "/orders", "📋", Capability.VIEW_ORDERS, frozenset(Role)),
    NavigationItem("Menu", "/menu", "🍽️", Capability.MANAGE_MENU, frozenset({Role.OWNER, Role.MANAGER})),
    NavigationItem("Staff", "/staff", "👥", Capability.MANAGE_STAFF, frozenset({Role.OWNER})),
    NavigationItem("Reports", "/reports", "📈", Capability.VIEW_REPORTS, frozenset({Role.OWNER, Role.MANAGER})),
    NavigationItem("Payments", "/payments", "💰", Capability.PROCESS_PAYMENTS, frozenset({Role.OWNER, Role.MANAGER})),
)

_DEFAULT_ROUTES: Mapping[Role, str] = MappingProxyType({
    Role.OWNER: "/dashboard",
    Role.MANAGER: "/dashboard",
    Role.CHEF: "/kitchen",
    Role.WAITER: "/kitchen",
})


def as_role(role: Role | str) -> Role:
    """Coerce a role value; raises UnknownRole outside the closed set."""
    try:
        return Role(role)
    except ValueError:
        raise UnknownRole(role) from None


def as_capability(capability: Capability | str) -> Capability:
    try:
        return Capability(capability)
    except ValueError:
        raise InvalidArgument(f"Unknown capability: {capability!r}") from None


def capabilities_of(role: Role | str) -> frozenset[Capability]:
    return ROLE_CAPABILITIES[as_role(role)]


def has_capability(role: Role | str, capability: Capability | str) -> bool:
    return as_capability(capability) in capabilities_of(role)


def has_any_capability(role: Role | str, capabilities: Iterable[Capability | str]) -> bool:
    """True if the role holds at least one of capabilities. Empty input -> False."""
    held = capabilities_of(role)
    return any(as_capability(c) in held for c in capabilities)


def has_all_capabilities(role: Role | str, capabilities: Iterable[Capability | str]) -> bool:
    """True if the role holds every one of capabilities. Empty input -> True."""
    held = capabilities_of(role)
    return all(as_capability(c) in held for c in capabilities)


def can_access_feature(role: Role | str, feature: str) -> bool:
    """Unknown feature names are denied, not rejected."""
    required = FEATURE_CAPABILITIES.get(feature)
    if not required:
        return False
    return has_any_capability(role, required)


def available_features(role: Role | str) -> list[str]:
    return [feature for feature in FEATURE_CAPABILITIES if can_access_feature(role, feature)]


def navigation_items_for(role: Role | str, items: Iterable[NavigationItem] = NAVIGATION_ITEMS) -> list[NavigationItem]:
    """
    Navigation entries visible to role, in master-list order. An entry is shown only
    when the role is on its allow-list AND holds its capability.
    """
    role = as_role(role)
    return [
        item for item in items
        if role in item.roles and has_capability(role, item.capability)
    ]


def default_route(role: Role | str) -> str:
    return _DEFAULT_ROUTES[as_role(role)]


def can_manage(acting_role: Role | str, target_role: Role | str) -> bool:
    return as_role(target_role) in ROLE_HIERARCHY[as_role(acting_role)]


def can_create_order(role: Role | str) -> bool:
    role = as_role(role)
    return role in ORDER_CREATOR_ROLES and has_capability(role, Capability.VIEW_ORDERS)


def check_access(role: Role | str, required: Iterable[Capability | str]) -> AccessDecision:
    """Authorization gate for endpoints: allow only if the role holds every required capability."""
    if has_all_capabilities(role, required):
        return AccessDecision.ALLOW
    return AccessDecision.DENY
