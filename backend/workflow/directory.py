"""Directory contract consumed by the workflow engine.

The engine never queries users, departments or roles directly; it asks a
``Directory``. ``services.directory_service.DirectoryService`` implements
it over the database, and tests substitute an in-memory one.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass(frozen=True)
class DirectoryUser:
    """What the engine needs to know about a user."""

    id: str
    department_id: Optional[str] = None
    roles: tuple[str, ...] = field(default_factory=tuple)
    is_active: bool = True


@dataclass(frozen=True)
class DirectoryDepartment:
    """What the engine needs to know about a department."""

    id: str
    parent_id: Optional[str] = None
    manager_id: Optional[str] = None


class Directory(Protocol):
    """Read-only organization lookups."""

    async def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        ...

    async def get_department(self, department_id: str) -> Optional[DirectoryDepartment]:
        ...

    async def find_users_by_role(self, role_code: str) -> list[str]:
        ...

    async def find_users_in_department(self, department_id: str) -> list[str]:
        ...
