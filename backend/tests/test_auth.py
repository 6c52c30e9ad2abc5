"""Tests for authentication and security utilities."""

import pytest
from fastapi import HTTPException

from core.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
    verify_token,
)
from services.auth_service import AuthService


@pytest.mark.unit
class TestPasswordHashing:
    """Password hash/verify tests."""

    def test_hash_and_verify(self):
        raw = "SuperSecret123!"
        hashed = hash_password(raw)
        assert hashed != raw
        assert verify_password(raw, hashed) is True

    def test_wrong_password_rejected(self):
        hashed = hash_password("correct")
        assert verify_password("wrong", hashed) is False

    def test_different_hashes_for_same_password(self):
        """Each call should produce a different hash (salt)."""
        assert hash_password("same") != hash_password("same")


@pytest.mark.unit
class TestJWT:
    """JWT token creation and verification tests."""

    def test_access_token(self):
        payload = verify_token(create_access_token(user_id="user-123", email="test@example.com"))
        assert payload.sub == "user-123"
        assert payload.email == "test@example.com"
        assert payload.type == "access"

    def test_refresh_token(self):
        payload = verify_token(create_refresh_token(user_id="user-123", email="test@example.com"))
        assert payload.type == "refresh"

    def test_invalid_token_raises(self):
        with pytest.raises(HTTPException) as exc:
            verify_token("not.a.valid.token")
        assert exc.value.status_code == 401


@pytest.mark.integration
class TestAuthService:

    async def test_login(self, db_session, org, password):
        tokens = await AuthService(db_session).login(org.u1.email, password)
        assert tokens is not None
        assert verify_token(tokens["access_token"]).sub == org.u1.id
        assert tokens["user"].last_login_at is not None

    async def test_login_wrong_password(self, db_session, org):
        assert await AuthService(db_session).login(org.u1.email, "nope") is None

    async def test_login_inactive_user(self, db_session, org, password):
        org.u2.is_active = False
        await db_session.commit()
        assert await AuthService(db_session).login(org.u2.email, password) is None
