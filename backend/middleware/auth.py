"""
Bearer JWT authentication.

Access tokens are HS256 JWTs issued by the account service:
    sub  = user id (string)
    role = customer | staff | admin
Issuer and expiry are always checked.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Header

from config import settings
from domain.enums import UserRole
from domain.errors import PermissionDeniedError, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.STAFF.value, UserRole.ADMIN.value)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def _require_secret() -> str:
    if not settings.jwt_secret:
        logger.error("JWT_SECRET not configured; rejecting all tokens")
        raise UnauthorizedError("Server auth misconfigured (JWT secret missing).")
    return settings.jwt_secret


def decode_access_token(token: str) -> dict:
    secret = _require_secret()
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Access token expired.")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid access token.")


def issue_access_token(*, user_id: int, role: str) -> str:
    now = _now_utc()
    exp = now.replace(microsecond=0) + timedelta(minutes=settings.jwt_access_ttl_minutes)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, _require_secret(), algorithm="HS256")


async def require_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    token = _parse_bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Authentication required. Provide Authorization: Bearer <token>.")

    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise UnauthorizedError("Invalid access token subject.")

    role = payload.get("role") or UserRole.CUSTOMER.value
    return CurrentUser(id=user_id, role=role)


async def require_staff(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    user = await require_user(authorization=authorization)
    if not user.is_staff:
        raise PermissionDeniedError("Staff role required for this endpoint.")
    return user
