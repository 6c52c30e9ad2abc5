"""Workflow node instance model: the approval ledger."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import NodeInstanceStatus
from db.base import BaseModel


class WorkflowNodeInstance(BaseModel):
    """One step an instance entered, and its decision.

    Rows are appended by ``workflow.ledger.NodeInstanceLedger`` and decided
    exactly once through a conditional update on ``status``.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_instance_id: Owning instance
        definition_id: Definition version the node belongs to
        node_id: Graph node id
        node_name: Graph node name at the time the step was entered
        node_type: approval or parallel
        assignee_type: user, role, department, dynamic, initiator, supervisor
        assignee_id: Resolved user id, role code or department id
        status: pending, processing, approved, rejected, skipped, terminated
        comment: Decision comment
        actor_id: User who actually decided the step
        start_time: When the step was entered
        end_time: When the step was decided
        duration: end_time - start_time in seconds
        order: 1-based sequence number within the instance
    """

    __tablename__ = "workflow_node_instances"
    __table_args__ = (
        UniqueConstraint("workflow_instance_id", "order", name="uq_node_instance_order"),
    )

    workflow_instance_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_instances.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    node_id: Mapped[str] = mapped_column(nullable=False)
    node_name: Mapped[str] = mapped_column(nullable=False)
    node_type: Mapped[str] = mapped_column(nullable=False)
    assignee_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        default=NodeInstanceStatus.PENDING.value, index=True
    )
    comment: Mapped[Optional[str]] = mapped_column(nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    start_time: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(nullable=True)
    order: Mapped[int] = mapped_column(nullable=False, default=0)

    # Relationships
    instance: Mapped["WorkflowInstance"] = relationship(
        "WorkflowInstance", back_populates="node_instances", lazy="noload"
    )
