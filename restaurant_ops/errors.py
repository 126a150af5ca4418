"""
Domain errors. Raised by the core and the store, mapped to HTTP responses by the
exception handler in main.py via status_code.
"""


class RestaurantError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__doc__ or self.__class__.__name__
        super().__init__(self.message)


class InvalidArgument(RestaurantError):
    """Malformed role, capability or argument."""
    status_code = 400


class UnknownRole(InvalidArgument):
    """Role is not one of owner, manager, chef, waiter."""

    def __init__(self, role: object):
        self.role = role
        super().__init__(f"Unknown role: {role!r}")


class OrderValidationError(RestaurantError):
    """Order cannot be created from the given lines."""
    status_code = 400


class EmptyOrder(OrderValidationError):
    """Order must have at least one item."""


class InvalidQuantity(OrderValidationError):
    """Quantity must be at least 1."""

    def __init__(self, menu_item_id: str, quantity: int):
        self.menu_item_id = menu_item_id
        self.quantity = quantity
        super().__init__(f"Quantity for menu item {menu_item_id} must be at least 1, got {quantity}")


class ItemUnavailable(OrderValidationError):
    """Menu item is currently unavailable."""

    def __init__(self, menu_item_id: str, name: str):
        self.menu_item_id = menu_item_id
        super().__init__(f'Menu item "{name}" is currently unavailable')


class Unauthorized(RestaurantError):
    """Authentication required."""
    status_code = 401


class Forbidden(RestaurantError):
    """Insufficient permissions."""
    status_code = 403


class NotFound(RestaurantError):
    """Not found."""
    status_code = 404


class OrderNotFound(NotFound):
    """Order not found."""


class MenuItemNotFound(NotFound):
    """Menu item not found."""

    def __init__(self, menu_item_id: str | None = None):
        self.menu_item_id = menu_item_id
        super().__init__(f"Menu item {menu_item_id} not found" if menu_item_id else None)


class StaffNotFound(NotFound):
    """User not found."""


class Conflict(RestaurantError):
    status_code = 409


class IllegalTransition(Conflict):
    """Requested status change is not an edge of the order state machine."""

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(f"Cannot move order from {current_status} to {requested_status}")


class StaleState(Conflict):
    """Order status changed since it was read; refetch and retry."""
    retryable = True

    def __init__(self, order_id: str, expected_status: str):
        self.order_id = order_id
        self.expected_status = expected_status
        super().__init__(f"Order {order_id} is no longer {expected_status}")


class EmailTaken(Conflict):
    """User already exists with this email."""


class RequestInProgress(Conflict):
    """A request with this idempotency key is still being processed."""
