"""Role-Based Access Control (RBAC) enforcement.

Permissions are dotted codes granted to roles (``workflows.manage``,
``directory.manage``). A grant ending in ``.*`` covers a whole area and
``*`` covers everything; the seeded ``admin`` role holds ``*``.

Usage:
    @router.post("/")
    async def create_definition(
        current_user: TokenPayload = Depends(require_permission("workflows.manage")), ...
    ): ...
"""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.dependencies import get_current_active_user, get_db
from db.models.permission import Permission, role_permissions
from db.models.role import Role, user_roles

logger = logging.getLogger(__name__)


async def _get_user_permissions(user_id: str, db: AsyncSession) -> set[str]:
    """Permission codes granted to a user through their live roles."""
    result = await db.execute(
        select(Permission.code)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .join(Role, Role.id == role_permissions.c.role_id)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(
            user_roles.c.user_id == user_id,
            Role.is_deleted == False,
            Permission.is_deleted == False,
        )
        .distinct()
    )
    return set(result.scalars().all())


def _check_permission(user_perms: set[str], required: str) -> bool:
    if "*" in user_perms or required in user_perms:
        return True
    return any(
        grant.endswith(".*") and required.startswith(grant[:-1])
        for grant in user_perms
    )


async def _bootstrap_allowed(db: AsyncSession) -> bool:
    """True on a fresh non-production install with no permission rows yet."""
    if get_settings().is_production:
        return False
    configured = await db.execute(select(exists().where(Permission.id.is_not(None))))
    return not configured.scalar()


def require_permission(permission: str):
    """FastAPI dependency that enforces a single permission.

    Raises 403 when the caller lacks it. Outside production an empty
    permissions table lets every authenticated user through so that the
    first administrator can set up the directory.
    """

    async def _check(
        current_user=Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
    ):
        granted = await _get_user_permissions(current_user.sub, db)
        if _check_permission(granted, permission):
            return current_user

        if not granted and await _bootstrap_allowed(db):
            logger.debug("RBAC bootstrap: allowing %s (%s)", current_user.email, permission)
            return current_user

        logger.warning(
            "RBAC denied: user=%s permission=%s granted=%s",
            current_user.email, permission, sorted(granted),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing required permission: {permission}",
        )

    return _check
