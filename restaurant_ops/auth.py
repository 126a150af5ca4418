"""
Authentication: bcrypt password hashes, JWT bearer tokens, and the FastAPI
dependencies that resolve the caller and gate endpoints on capabilities.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from restaurant_ops.config import settings
from restaurant_ops.errors import Forbidden, Unauthorized
from restaurant_ops.metrics import access_denied_total
from restaurant_ops.models import StaffAccount, StaffRecord
from restaurant_ops.permissions import AccessDecision, Capability, can_create_order, check_access
from restaurant_ops.store import get_store

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_token(user: StaffAccount) -> str:
    """Sign a bearer token. The role is fixed for the token's lifetime."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "role": user.role.value,
        "iat": now,
        "exp": now + timedelta(hours=settings.jwt_expires_hours),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired") from None
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token") from None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    store=Depends(get_store),
) -> StaffRecord:
    if credentials is None:
        raise Unauthorized("Access token is required")
    payload = decode_token(credentials.credentials)
    user = await store.get_staff(payload.get("sub", ""))
    if user is None or not user.is_active:
        raise Unauthorized("Invalid or expired token")
    # A role change ends the session: the caller must log in again to act with the new role.
    if payload.get("role") != user.role.value:
        raise Unauthorized("Role changed, please log in again")
    return user


def require_capabilities(*capabilities: Capability):
    """Dependency factory: the caller must hold every one of capabilities."""

    async def dependency(user: StaffRecord = Depends(get_current_user)) -> StaffRecord:
        if check_access(user.role, capabilities) is AccessDecision.DENY:
            access_denied_total.labels(role=user.role.value).inc()
            logger.info("Access denied user_id=%s role=%s required=%s", user.id, user.role.value, [c.value for c in capabilities])
            raise Forbidden(f"Insufficient permissions. Required: [{', '.join(c.value for c in capabilities)}]")
        return user

    return dependency


async def require_order_creator(
    user: StaffRecord = Depends(require_capabilities(Capability.VIEW_ORDERS)),
) -> StaffRecord:
    if not can_create_order(user.role):
        access_denied_total.labels(role=user.role.value).inc()
        raise Forbidden(f"Role {user.role.value} cannot create orders")
    return user
