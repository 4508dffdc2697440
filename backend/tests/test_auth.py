"""
Tests for bearer JWT authentication.

Tests: require_user / require_staff; header parsing, token validation, roles.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException

from config import settings
from middleware.auth import (
    CurrentUser,
    decode_access_token,
    issue_access_token,
    require_staff,
    require_user,
)


def _bearer(token: str) -> str:
    return f"Bearer {token}"


class TestRequireUser:
    """Tests for the require_user dependency."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_valid_token(self):
        token = issue_access_token(user_id=42, role="customer")
        user = await require_user(authorization=_bearer(token))
        assert user == CurrentUser(id=42, role="customer")
        assert user.is_staff is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_header_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_user(authorization=None)
        assert exc_info.value.status_code == 401
        assert "Authentication required" in exc_info.value.detail

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wrong_scheme_raises_401(self):
        token = issue_access_token(user_id=42, role="customer")
        with pytest.raises(HTTPException) as exc_info:
            await require_user(authorization=f"Basic {token}")
        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_token_raises_401(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "iss": settings.jwt_issuer,
                "sub": "42",
                "iat": int((now - timedelta(hours=2)).timestamp()),
                "exp": int((now - timedelta(hours=1)).timestamp()),
            },
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            await require_user(authorization=_bearer(token))
        assert exc_info.value.status_code == 401
        assert "expired" in exc_info.value.detail.lower()

    @pytest.mark.unit
    def test_foreign_issuer_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "iss": "someone-else",
                "sub": "42",
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(minutes=5)).timestamp()),
            },
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    def test_wrong_secret_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "iss": settings.jwt_issuer,
                "sub": "42",
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(minutes=5)).timestamp()),
            },
            "not-the-server-secret",
            algorithm="HS256",
        )
        with pytest.raises(HTTPException):
            decode_access_token(token)


class TestRequireStaff:

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", ["staff", "admin"])
    async def test_staff_roles_allowed(self, role):
        token = issue_access_token(user_id=7, role=role)
        user = await require_staff(authorization=_bearer(token))
        assert user.is_staff is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_customer_gets_403(self):
        token = issue_access_token(user_id=42, role="customer")
        with pytest.raises(HTTPException) as exc_info:
            await require_staff(authorization=_bearer(token))
        assert exc_info.value.status_code == 403
