"""Department model for the OA directory."""

from typing import Optional

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import DepartmentStatus
from db.base import BaseModel


class Department(BaseModel):
    """A node in the organization tree.

    Attributes:
        id: Unique identifier (UUID string)
        name: Department name (unique)
        code: Department code (unique)
        description: Free text
        parent_id: Parent department, null for the root
        manager_id: User who approves on behalf of this department
        status: active or inactive
    """

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(nullable=False, unique=True)
    code: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    parent_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    manager_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(default=DepartmentStatus.ACTIVE.value)

    # Relationships
    parent: Mapped[Optional["Department"]] = relationship(
        "Department", remote_side="Department.id", lazy="noload"
    )
    members: Mapped[list["User"]] = relationship(
        "User",
        foreign_keys="User.department_id",
        back_populates="department",
        lazy="noload",
    )
