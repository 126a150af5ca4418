import logging
import math

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from restaurant_ops.auth import require_capabilities, require_order_creator
from restaurant_ops.errors import Forbidden, IllegalTransition, OrderNotFound, RequestInProgress, StaleState
from restaurant_ops.metrics import order_transitions_rejected_total, order_transitions_total, orders_created_total
from restaurant_ops.models import Order, StaffRecord
from restaurant_ops.order_state import OrderStatus, previous_status
from restaurant_ops.orders import LineRequest, place_order, request_order_transition
from restaurant_ops.permissions import Capability, has_capability
from restaurant_ops.redis_client import (
    PENDING,
    claim_idempotency_key,
    idempotency_redis_key,
    reclaim_idempotency_key,
    release_idempotency_key,
    remember_idempotent_result,
)
from restaurant_ops.store import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderLineBody(BaseModel):
    menu_item_id: str = Field(..., description="Menu item being ordered")
    quantity: int = Field(..., description="Number of portions, at least 1")
    note: str | None = Field(default=None, max_length=200, description="Preparation note for the kitchen")


class CreateOrderBody(BaseModel):
    table_number: int = Field(..., description="Table the order belongs to, 1 or more")
    lines: list[OrderLineBody] = Field(default_factory=list)
    customer_name: str | None = Field(default=None, max_length=100)


class UpdateStatusBody(BaseModel):
    status: OrderStatus


def _order_json(order: Order, viewer: StaffRecord) -> dict:
    data = order.model_dump(mode="json")
    if not has_capability(viewer.role, Capability.VIEW_CUSTOMER_DATA):
        data["customer_name"] = None
    return data


@router.post("")
async def create_order(
    body: CreateOrderBody,
    user: StaffRecord = Depends(require_order_creator),
    store=Depends(get_store),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> JSONResponse:
    """
    Create a pending order. With an Idempotency-Key header, a repeated request
    returns the order created by the first one (200) instead of a duplicate.
    """
    key = idempotency_redis_key(f"orders:{user.id}", idempotency_key) if idempotency_key else None
    if key:
        existing = await claim_idempotency_key(key)
        if existing == PENDING:
            raise RequestInProgress()
        if existing:
            order = await store.get_order(existing)
            if order is not None:
                return JSONResponse(
                    status_code=200,
                    content={"success": True, "message": "Order already created", "data": {"order": _order_json(order, user)}},
                )
            # Result was lost; take the key over before creating a new order.
            await reclaim_idempotency_key(key)

    try:
        order = await place_order(
            store,
            table_number=body.table_number,
            lines=[LineRequest(line.menu_item_id, line.quantity, line.note) for line in body.lines],
            customer_name=body.customer_name,
            created_by=user.id,
        )
    except Exception:
        if key:
            await release_idempotency_key(key)
        raise
    if key:
        await remember_idempotent_result(key, order.id)

    orders_created_total.inc()
    logger.info(
        "Order created order_id=%s number=%s table=%d total=%s by=%s",
        order.id, order.order_number, order.table_number, order.total, user.id,
    )
    return JSONResponse(
        status_code=201,
        content={"success": True, "message": "Order created successfully", "data": {"order": _order_json(order, user)}},
    )


@router.get("")
async def list_orders(
    status: OrderStatus | None = Query(default=None),
    table_number: int | None = Query(default=None, ge=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: StaffRecord = Depends(require_capabilities(Capability.VIEW_ORDERS)),
    store=Depends(get_store),
) -> JSONResponse:
    orders, total_count = await store.list_orders(status=status, table_number=table_number, page=page, limit=limit)
    total_pages = math.ceil(total_count / limit)
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": {
                "orders": [_order_json(o, user) for o in orders],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total_count": total_count,
                    "total_pages": total_pages,
                    "has_next_page": page < total_pages,
                    "has_prev_page": page > 1,
                },
            },
        },
    )


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user: StaffRecord = Depends(require_capabilities(Capability.VIEW_ORDERS)),
    store=Depends(get_store),
) -> JSONResponse:
    order = await store.get_order(order_id)
    if order is None:
        raise OrderNotFound()
    return JSONResponse(status_code=200, content={"success": True, "data": {"order": _order_json(order, user)}})


async def _transition(store, order_id: str, status: OrderStatus, user: StaffRecord) -> Order:
    """Apply a status change, reissuing once if a concurrent writer made our read stale."""
    try:
        try:
            return await request_order_transition(store, order_id, status, user.role)
        except StaleState:
            logger.info("Stale status on order_id=%s, refetching and retrying once", order_id)
            return await request_order_transition(store, order_id, status, user.role)
    except (IllegalTransition, Forbidden, StaleState) as e:
        order_transitions_rejected_total.labels(reason=type(e).__name__).inc()
        raise


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: UpdateStatusBody,
    user: StaffRecord = Depends(require_capabilities(Capability.UPDATE_ORDER_STATUS)),
    store=Depends(get_store),
) -> JSONResponse:
    order = await _transition(store, order_id, body.status, user)
    from_status = previous_status(order.status).value
    order_transitions_total.labels(from_status=from_status, to_status=order.status.value).inc()
    logger.info(
        "Order status updated order_id=%s number=%s %s -> %s by=%s role=%s",
        order.id, order.order_number, from_status, order.status.value, user.id, user.role.value,
    )
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Order status updated successfully", "data": {"order": _order_json(order, user)}},
    )
