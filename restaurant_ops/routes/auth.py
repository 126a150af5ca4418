import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from restaurant_ops.auth import generate_token, get_current_user, hash_password, verify_password
from restaurant_ops.errors import Forbidden, Unauthorized
from restaurant_ops.models import StaffRecord, new_id, utcnow
from restaurant_ops.permissions import Role, available_features, default_route, navigation_items_for
from restaurant_ops.store import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: Role


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


def _user_json(user: StaffRecord) -> dict:
    return user.public().model_dump(mode="json")


async def create_account(store, name: str, email: str, password: str, role: Role) -> StaffRecord:
    record = StaffRecord(
        id=new_id(),
        name=name,
        email=email.lower(),
        role=role,
        created_at=utcnow(),
        password_hash=hash_password(password),
    )
    return await store.insert_staff(record)


@router.post("/register")
async def register(body: RegisterBody, store=Depends(get_store)) -> JSONResponse:
    user = await create_account(store, body.name, body.email, body.password, body.role)
    logger.info("User registered user_id=%s email=%s role=%s", user.id, user.email, user.role.value)
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "User registered successfully",
            "data": {"token": generate_token(user), "user": _user_json(user)},
        },
    )


@router.post("/login")
async def login(body: LoginBody, store=Depends(get_store)) -> JSONResponse:
    user = await store.get_staff_by_email(body.email)
    if user is None:
        raise Unauthorized("Invalid credentials")
    if not user.is_active:
        raise Forbidden("Account is deactivated")
    if not verify_password(body.password, user.password_hash):
        raise Unauthorized("Invalid credentials")

    user = await store.update_staff(user.id, last_login=utcnow()) or user
    logger.info("User logged in user_id=%s email=%s", user.id, user.email)
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": "Login successful",
            "data": {"token": generate_token(user), "user": _user_json(user)},
        },
    )


@router.get("/profile")
async def profile(user: StaffRecord = Depends(get_current_user)) -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": True, "data": {"user": _user_json(user)}})


@router.post("/refresh")
async def refresh(user: StaffRecord = Depends(get_current_user)) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Token refreshed successfully", "data": {"token": generate_token(user)}},
    )


@router.post("/logout")
async def logout(user: StaffRecord = Depends(get_current_user)) -> JSONResponse:
    logger.info("User logged out user_id=%s", user.id)
    return JSONResponse(status_code=200, content={"success": True, "message": "Logged out successfully"})


@router.get("/navigation")
async def navigation(user: StaffRecord = Depends(get_current_user)) -> JSONResponse:
    """What the dashboards may show the caller: nav entries, features and landing route."""
    items = [
        {**asdict(item), "capability": item.capability.value, "roles": sorted(r.value for r in item.roles)}
        for item in navigation_items_for(user.role)
    ]
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": {
                "navigation": items,
                "features": available_features(user.role),
                "default_route": default_route(user.role),
            },
        },
    )
