"""Workflow instance model: one execution of a definition version."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import InstanceStatus, Priority
from db.base import BaseModel


class WorkflowInstance(BaseModel):
    """A running or finished approval process.

    Mutated only by ``workflow.state_machine``; never deleted.

    Attributes:
        id: Unique identifier (UUID string)
        definition_id: The definition version this instance runs
        business_key: Optional correlation id into business data
        title: Human-readable title
        form_data: Submitted form values (validated on create)
        current_node_id: Graph node the instance sits on; null once terminal
        status: draft, processing, approved, rejected, canceled, terminated
        initiator_id: User who started the process
        start_time: When the instance was submitted
        end_time: When the instance reached a terminal status
        priority: low, medium, high, urgent
        due_date: Optional deadline shown to approvers
        resubmitted_from_id: Rejected instance this one replaces
        cancel_reason: Reason given on cancel/terminate
        submit_comment: Note the initiator attached when submitting
    """

    __tablename__ = "workflow_instances"

    definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    business_key: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    title: Mapped[str] = mapped_column(nullable=False)
    form_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    current_node_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        default=InstanceStatus.DRAFT.value, index=True
    )
    initiator_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    start_time: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    priority: Mapped[str] = mapped_column(default=Priority.MEDIUM.value)
    due_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    resubmitted_from_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_instances.id", ondelete="SET NULL"),
        nullable=True,
    )
    cancel_reason: Mapped[Optional[str]] = mapped_column(nullable=True)
    submit_comment: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    definition: Mapped["WorkflowDefinition"] = relationship(
        "WorkflowDefinition", back_populates="instances", lazy="selectin"
    )
    node_instances: Mapped[list["WorkflowNodeInstance"]] = relationship(
        "WorkflowNodeInstance",
        back_populates="instance",
        order_by="WorkflowNodeInstance.order",
        lazy="noload",
    )

    @property
    def status_enum(self) -> InstanceStatus:
        return InstanceStatus(self.status)
