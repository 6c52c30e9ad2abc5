"""User service: directory user management."""

from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.security import hash_password
from db.models.department import Department
from db.models.role import Role
from db.models.user import User
from services.base import BaseService


class UserService(BaseService[User]):
    """Service for directory users and their role assignments."""

    def __init__(self, db: AsyncSession):
        super().__init__(User, db)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email, User.is_deleted == False)
        )
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        password: str,
        name: str,
        department_id: Optional[str] = None,
        position: Optional[str] = None,
        role_codes: Optional[list[str]] = None,
    ) -> User:
        """Create a user with a hashed password and optional roles.

        Raises:
            ConflictError: If the email is already registered
            NotFoundError: If the department or a role does not exist
        """
        if await self.get_by_email(email):
            raise ConflictError(f"Email already registered: {email}")
        if department_id:
            await self._require_department(department_id)

        user = User(
            email=email,
            password_hash=hash_password(password),
            name=name,
            department_id=department_id,
            position=position,
        )
        user.roles = await self._load_roles(role_codes or [])
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def update_user(self, user_id: str, data: dict) -> User:
        """Update safe profile fields; ``role_codes`` replaces the role set."""
        user = await self.get_by_id(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")

        allowed_fields = {"name", "department_id", "position", "is_active"}
        for key, value in data.items():
            if key in allowed_fields and value is not None:
                if key == "department_id":
                    await self._require_department(value)
                setattr(user, key, value)
        if data.get("role_codes") is not None:
            user.roles = await self._load_roles(data["role_codes"])

        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def list_users(
        self,
        search: Optional[str] = None,
        department_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ):
        """List users, optionally filtered by department or name/email search."""
        if not search:
            return await self.list(
                offset=offset,
                limit=limit,
                order_by="name",
                order_desc=False,
                filters={"department_id": department_id},
            )

        pattern = f"%{search}%"
        query = select(User).where(
            User.is_deleted == False,
            or_(User.name.ilike(pattern), User.email.ilike(pattern)),
        )
        if department_id:
            query = query.where(User.department_id == department_id)
        result = await self.db.execute(query.order_by(User.name))
        items = result.scalars().all()
        return items[offset:offset + limit], len(items)

    async def deactivate(self, user_id: str) -> User:
        return await self.update_user(user_id, {"is_active": False})

    async def _require_department(self, department_id: str) -> None:
        result = await self.db.execute(
            select(Department.id).where(
                Department.id == department_id,
                Department.is_deleted == False,
            )
        )
        if result.first() is None:
            raise NotFoundError(f"Department {department_id} not found")

    async def _load_roles(self, role_codes: list[str]) -> list[Role]:
        if not role_codes:
            return []
        result = await self.db.execute(
            select(Role).where(Role.code.in_(role_codes), Role.is_deleted == False)
        )
        roles = list(result.scalars().all())
        missing = sorted(set(role_codes) - {r.code for r in roles})
        if missing:
            raise ValidationError("Unknown roles", [f"role '{code}' does not exist" for code in missing])
        return roles
