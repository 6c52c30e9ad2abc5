"""Workflow definition model: a named, versioned approval template."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import DefinitionStatus, WorkflowCategory
from db.base import BaseModel


class WorkflowDefinition(BaseModel):
    """One version of a process template.

    Every version of the same process shares ``code``; exactly one of them
    carries ``is_latest``. Rows referenced by an instance are never edited
    in place (see ``services.definition_service``).

    Attributes:
        id: Unique identifier (UUID string)
        name: Display name
        code: Stable process code shared by all versions
        category: leave, overtime, expense, generic, ...
        description: Free text
        node_config: Node graph, ``{"nodes": [...]}``
        form_schema: Form field declarations, ``{"fields": [...]}``
        status: draft, active or inactive
        version: Monotonic version number per code
        is_latest: Whether this is the newest version of ``code``
        created_by_id: User who created the version
        updated_by_id: User who last edited the version
    """

    __tablename__ = "workflow_definitions"
    __table_args__ = (
        UniqueConstraint("code", "version", name="uq_workflow_definition_code_version"),
    )

    name: Mapped[str] = mapped_column(nullable=False)
    code: Mapped[str] = mapped_column(nullable=False, index=True)
    category: Mapped[str] = mapped_column(
        nullable=False, default=WorkflowCategory.GENERIC.value, index=True
    )
    description: Mapped[str] = mapped_column(nullable=False, default="")
    node_config: Mapped[dict] = mapped_column(JSON, nullable=False)
    form_schema: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        default=DefinitionStatus.DRAFT.value, index=True
    )
    version: Mapped[int] = mapped_column(default=1)
    is_latest: Mapped[bool] = mapped_column(default=True, index=True)
    created_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Relationships
    instances: Mapped[list["WorkflowInstance"]] = relationship(
        "WorkflowInstance",
        back_populates="definition",
        lazy="noload",
    )
