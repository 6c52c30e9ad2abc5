"""Role model and user_roles association table."""

from sqlalchemy import ForeignKey, Table, Column
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, BaseModel

# Association table for many-to-many relationship between User and Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(BaseModel):
    """Role model for role-based access control (RBAC).

    ``code`` is what workflow definitions reference in role assignee
    rules (e.g. ``{"type": "role", "id": "admin"}``).

    Attributes:
        id: Unique identifier (UUID string)
        code: Stable machine name (unique)
        name: Display name
        description: Role description
        is_system_role: Whether this is a system role (cannot be deleted)
    """

    __tablename__ = "roles"

    code: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_system_role: Mapped[bool] = mapped_column(default=False)

    # Relationships
    users: Mapped[list["User"]] = relationship(
        "User",
        secondary=user_roles,
        back_populates="roles",
        lazy="noload",
    )
    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )
