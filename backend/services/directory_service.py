"""Directory service: read-only organization lookups for the workflow engine."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models.department import Department
from db.models.role import Role, user_roles
from db.models.user import User
from workflow.directory import DirectoryDepartment, DirectoryUser


class DirectoryService:
    """Database-backed ``workflow.directory.Directory``.

    Soft-deleted users and departments are invisible; deactivated users are
    returned with ``is_active=False`` so the resolver can skip them.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        result = await self.db.execute(
            select(User).where(User.id == user_id, User.is_deleted == False)
        )
        user = result.scalar_one_or_none()
        if not user:
            return None
        return DirectoryUser(
            id=user.id,
            department_id=user.department_id,
            roles=tuple(user.role_codes),
            is_active=user.is_active,
        )

    async def get_department(self, department_id: str) -> Optional[DirectoryDepartment]:
        result = await self.db.execute(
            select(Department).where(
                Department.id == department_id,
                Department.is_deleted == False,
            )
        )
        department = result.scalar_one_or_none()
        if not department:
            return None
        return DirectoryDepartment(
            id=department.id,
            parent_id=department.parent_id,
            manager_id=department.manager_id,
        )

    async def find_users_by_role(self, role_code: str) -> list[str]:
        result = await self.db.execute(
            select(User.id)
            .join(user_roles, user_roles.c.user_id == User.id)
            .join(Role, Role.id == user_roles.c.role_id)
            .where(
                Role.code == role_code,
                Role.is_deleted == False,
                User.is_deleted == False,
                User.is_active == True,
            )
            .order_by(User.id)
        )
        return list(result.scalars().all())

    async def find_users_in_department(self, department_id: str) -> list[str]:
        result = await self.db.execute(
            select(User.id)
            .where(
                User.department_id == department_id,
                User.is_deleted == False,
                User.is_active == True,
            )
            .order_by(User.id)
        )
        return list(result.scalars().all())
