"""
Typed in-memory records for menu items, orders and staff accounts.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from restaurant_ops.order_state import OrderStatus
from restaurant_ops.permissions import Capability, Role, capabilities_of


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_order_number(created_at: datetime, seq: int) -> str:
    return f"ORD-{created_at:%Y%m%d}-{seq:03d}"


class MenuCategory(str, Enum):
    APPETIZER = "appetizer"
    MAIN_COURSE = "main_course"
    DESSERT = "dessert"
    BEVERAGE = "beverage"
    SPECIAL = "special"


class MenuItem(BaseModel):
    id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    category: MenuCategory
    available: bool = True
    prep_time: int = Field(default=0, ge=0, description="Preparation time in minutes")
    allergens: list[str] = Field(default_factory=list)
    image_url: str | None = Field(default=None, pattern=r"^https?://.+")
    created_at: datetime
    updated_at: datetime


class OrderLine(BaseModel):
    """One menu item in an order, with name and price captured when the order was placed."""
    model_config = ConfigDict(frozen=True)

    menu_item_id: str
    name: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    line_total: Decimal
    note: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _check_line_total(self) -> "OrderLine":
        if self.line_total != self.unit_price * self.quantity:
            raise ValueError("line_total must equal unit_price * quantity")
        return self


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    order_number: str | None = None  # assigned by the store on insert
    table_number: int = Field(..., ge=1)
    lines: tuple[OrderLine, ...] = Field(..., min_length=1)
    status: OrderStatus = OrderStatus.PENDING
    total: Decimal
    customer_name: str | None = Field(default=None, max_length=100)
    created_at: datetime
    updated_at: datetime
    created_by: str | None = None

    @model_validator(mode="after")
    def _check_total(self) -> "Order":
        if self.total != sum((line.line_total for line in self.lines), Decimal(0)):
            raise ValueError("total must equal the sum of line totals")
        return self


class StaffAccount(BaseModel):
    id: str
    name: str = Field(..., min_length=1, max_length=100)
    email: str
    role: Role
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime

    @computed_field
    @property
    def capabilities(self) -> list[Capability]:
        return sorted(capabilities_of(self.role), key=lambda c: list(Capability).index(c))


class StaffRecord(StaffAccount):
    """Staff account plus its password hash. Never returned from the API."""
    password_hash: str = Field(..., repr=False)

    def public(self) -> StaffAccount:
        return StaffAccount.model_validate(self.model_dump(exclude={"password_hash", "capabilities"}))
