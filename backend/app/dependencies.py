"""FastAPI dependency injection functions."""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import OAException
from core.security import get_current_user, TokenPayload
from db import database

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Request-scoped session.

    Commits when the endpoint returns and rolls back when it raises, so an
    instance status change and the ledger rows written with it land
    together or not at all.
    """
    async with database.AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except (OAException, HTTPException) as e:
            logger.debug("Rolling back after %s", e)
            await session.rollback()
            raise
        except Exception as e:
            logger.error("Database error: %s", e)
            await session.rollback()
            raise


async def get_current_active_user(
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TokenPayload:
    """
    Token claims of a user that still exists and is active.

    Raises:
        HTTPException: 401 for an unknown user, 403 for a deactivated one
    """
    from db.models.user import User

    result = await db.execute(
        select(User.is_active).where(User.id == current_user.sub, User.is_deleted == False)
    )
    is_active = result.scalar_one_or_none()

    if is_active is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is deactivated")

    return current_user
