"""Authentication service: login and token issuance."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.security import create_access_token, create_refresh_token, verify_password
from core.utils import utc_now
from db.models.user import User

logger = logging.getLogger(__name__)


class AuthService:
    """Checks credentials against the directory and issues JWTs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def login(self, email: str, password: str) -> Optional[dict]:
        """Authenticate a user and stamp ``last_login_at``.

        Unknown, deleted and deactivated accounts fail the same way as a
        wrong password.

        Returns:
            Dict with access_token, refresh_token, token_type and user,
            or None if authentication fails
        """
        user = (
            await self.db.execute(
                select(User).where(User.email == email, User.is_deleted == False)
            )
        ).scalar_one_or_none()

        if user is None or not verify_password(password, user.password_hash):
            return None
        if not user.is_active:
            logger.info("Login refused for deactivated user %s", user.id)
            return None

        user.last_login_at = utc_now()
        await self.db.flush()

        return {
            "access_token": create_access_token(user_id=user.id, email=user.email),
            "refresh_token": create_refresh_token(user_id=user.id, email=user.email),
            "token_type": "bearer",
            "user": user,
        }

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.id == user_id, User.is_deleted == False)
        )
        return result.scalar_one_or_none()
