"""Department service: the organization tree used for supervisor lookup."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictError, NotFoundError, ValidationError
from db.models.department import Department
from db.models.user import User
from services.base import BaseService


class DepartmentService(BaseService[Department]):
    """Service for department management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Department, db)

    async def get_by_code(self, code: str) -> Optional[Department]:
        result = await self.db.execute(
            select(Department).where(Department.code == code, Department.is_deleted == False)
        )
        return result.scalar_one_or_none()

    async def create_department(
        self,
        name: str,
        code: str,
        description: str = "",
        parent_id: Optional[str] = None,
        manager_id: Optional[str] = None,
    ) -> Department:
        """Create a department.

        Raises:
            ConflictError: If the code is already in use
            NotFoundError: If the parent or manager does not exist
        """
        if await self.get_by_code(code):
            raise ConflictError(f"Department code already exists: {code}")
        if parent_id and not await self.exists(parent_id):
            raise NotFoundError(f"Parent department {parent_id} not found")
        if manager_id:
            await self._require_user(manager_id)

        return await self.create({
            "name": name,
            "code": code,
            "description": description,
            "parent_id": parent_id,
            "manager_id": manager_id,
        })

    async def update_department(self, department_id: str, data: dict) -> Department:
        """Update a department, refusing moves that would create a cycle."""
        department = await self.get_by_id(department_id)
        if not department:
            raise NotFoundError(f"Department {department_id} not found")

        parent_id = data.get("parent_id")
        if parent_id:
            if not await self.exists(parent_id):
                raise NotFoundError(f"Parent department {parent_id} not found")
            if department_id in await self.ancestors(parent_id) or parent_id == department_id:
                raise ValidationError(
                    "Invalid department tree",
                    [f"department '{department_id}' cannot be its own ancestor"],
                )
        if data.get("manager_id"):
            await self._require_user(data["manager_id"])

        allowed = {"name", "description", "parent_id", "manager_id", "status"}
        return await self.update(department_id, {k: v for k, v in data.items() if k in allowed})

    async def ancestors(self, department_id: str) -> list[str]:
        """Ids from ``department_id`` up to the root, inclusive."""
        chain: list[str] = []
        current: Optional[str] = department_id
        while current and current not in chain:
            chain.append(current)
            department = await self.get_by_id(current)
            current = department.parent_id if department else None
        return chain

    async def list_departments(self, offset: int = 0, limit: int = 100):
        return await self.list(offset=offset, limit=limit, order_by="name", order_desc=False)

    async def _require_user(self, user_id: str) -> None:
        result = await self.db.execute(
            select(User.id).where(User.id == user_id, User.is_deleted == False)
        )
        if result.first() is None:
            raise NotFoundError(f"User {user_id} not found")
