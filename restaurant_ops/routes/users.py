"""
Staff management. Every route needs MANAGE_STAFF; changes to an account also need the
role hierarchy to let the caller manage both the account's current and new role.
Accounts are deactivated, never deleted.
"""
import logging
import math

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from restaurant_ops.auth import require_capabilities
from restaurant_ops.errors import Forbidden, StaffNotFound
from restaurant_ops.metrics import access_denied_total
from restaurant_ops.models import StaffRecord
from restaurant_ops.permissions import Capability, Role, can_manage
from restaurant_ops.routes.auth import create_account
from restaurant_ops.store import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

manage_staff = require_capabilities(Capability.MANAGE_STAFF)


class CreateStaffBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: Role


class UpdateStatusBody(BaseModel):
    is_active: bool


class UpdateRoleBody(BaseModel):
    role: Role


def _user_json(user: StaffRecord) -> dict:
    return user.public().model_dump(mode="json")


def _ensure_can_manage(actor: StaffRecord, *target_roles: Role) -> None:
    for role in target_roles:
        if not can_manage(actor.role, role):
            access_denied_total.labels(role=actor.role.value).inc()
            raise Forbidden(f"Role {actor.role.value} cannot manage {role.value} accounts")


async def _get_target(store, user_id: str) -> StaffRecord:
    target = await store.get_staff(user_id)
    if target is None:
        raise StaffNotFound()
    return target


@router.get("")
async def list_users(
    role: Role | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    actor: StaffRecord = Depends(manage_staff),
    store=Depends(get_store),
) -> JSONResponse:
    users, total_count = await store.list_staff(role=role, is_active=is_active, page=page, limit=limit)
    total_pages = math.ceil(total_count / limit)
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": {
                "users": [_user_json(u) for u in users],
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


@router.get("/{user_id}")
async def get_user(user_id: str, actor: StaffRecord = Depends(manage_staff), store=Depends(get_store)) -> JSONResponse:
    target = await _get_target(store, user_id)
    return JSONResponse(status_code=200, content={"success": True, "data": {"user": _user_json(target)}})


@router.post("")
async def add_staff_member(
    body: CreateStaffBody,
    actor: StaffRecord = Depends(manage_staff),
    store=Depends(get_store),
) -> JSONResponse:
    _ensure_can_manage(actor, body.role)
    user = await create_account(store, body.name, body.email, body.password, body.role)
    logger.info("Staff member added user_id=%s role=%s by=%s", user.id, user.role.value, actor.id)
    return JSONResponse(
        status_code=201,
        content={"success": True, "message": "Staff member added successfully", "data": {"user": _user_json(user)}},
    )


@router.patch("/{user_id}/status")
async def update_user_status(
    user_id: str,
    body: UpdateStatusBody,
    actor: StaffRecord = Depends(manage_staff),
    store=Depends(get_store),
) -> JSONResponse:
    target = await _get_target(store, user_id)
    _ensure_can_manage(actor, target.role)
    user = await store.update_staff(user_id, is_active=body.is_active)
    if user is None:
        raise StaffNotFound()
    logger.info("Staff status updated user_id=%s is_active=%s by=%s", user.id, user.is_active, actor.id)
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": f"User {'activated' if user.is_active else 'deactivated'} successfully",
            "data": {"user": _user_json(user)},
        },
    )


@router.patch("/{user_id}/role")
async def update_user_role(
    user_id: str,
    body: UpdateRoleBody,
    actor: StaffRecord = Depends(manage_staff),
    store=Depends(get_store),
) -> JSONResponse:
    target = await _get_target(store, user_id)
    _ensure_can_manage(actor, target.role, body.role)
    user = await store.update_staff(user_id, role=body.role)
    if user is None:
        raise StaffNotFound()
    logger.info("Staff role updated user_id=%s %s -> %s by=%s", user.id, target.role.value, user.role.value, actor.id)
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "User role updated successfully", "data": {"user": _user_json(user)}},
    )
