"""
Node Instance Ledger.

Append-only audit trail of the steps an instance entered. Every row is
decided exactly once: decisions go through a single conditional UPDATE
guarded on the row still being open, so of two racing approvals exactly
one wins and the other gets ``AlreadyDecidedError``.

Writes are flushed into the caller's session; committing (or rolling back)
the instance and its ledger together is the caller's job.
"""

from typing import Optional, Sequence

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import OPEN_NODE_STATUSES, NodeInstanceStatus
from core.exceptions import AlreadyDecidedError, ValidationError
from core.utils import utc_now
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_node_instance import WorkflowNodeInstance
from workflow.graph import Node
from workflow.resolver import Assignee

logger = structlog.get_logger(__name__)

DECISION_STATUSES = (
    NodeInstanceStatus.APPROVED,
    NodeInstanceStatus.REJECTED,
    NodeInstanceStatus.SKIPPED,
    NodeInstanceStatus.TERMINATED,
)


class NodeInstanceLedger:
    """Reads and writes ``workflow_node_instances`` rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Write ─────────────────────────────────────────────

    async def append(
        self,
        instance: WorkflowInstance,
        node: Node,
        assignee: Assignee,
        order: Optional[int] = None,
    ) -> WorkflowNodeInstance:
        """Insert a pending row for ``node``.

        ``order`` defaults to the next free sequence number of the instance.
        """
        if order is None:
            order = await self.next_order(instance.id)

        row = WorkflowNodeInstance(
            workflow_instance_id=instance.id,
            definition_id=instance.definition_id,
            node_id=node.id,
            node_name=node.name,
            node_type=node.type.value,
            assignee_type=assignee.assignee_type.value,
            assignee_id=assignee.assignee_id,
            status=NodeInstanceStatus.PENDING.value,
            start_time=utc_now(),
            order=order,
        )
        self.db.add(row)
        await self.db.flush()

        logger.info(
            "Node instance appended",
            instance_id=instance.id,
            node_id=node.id,
            order=order,
            assignee_type=assignee.assignee_type.value,
            assignee_id=assignee.assignee_id,
        )
        return row

    async def decide(
        self,
        node_instance: WorkflowNodeInstance,
        status: NodeInstanceStatus,
        actor_id: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> WorkflowNodeInstance:
        """Close an open row with a final status.

        Raises:
            AlreadyDecidedError: the row was no longer pending/processing
        """
        if status not in DECISION_STATUSES:
            raise ValidationError(f"'{status.value}' is not a decision status")

        now = utc_now()
        duration = None
        if node_instance.start_time is not None:
            duration = int((now - node_instance.start_time).total_seconds())

        result = await self.db.execute(
            update(WorkflowNodeInstance)
            .where(
                WorkflowNodeInstance.id == node_instance.id,
                WorkflowNodeInstance.status.in_(OPEN_NODE_STATUSES),
            )
            .values(
                status=status.value,
                actor_id=actor_id,
                comment=comment,
                end_time=now,
                duration=duration,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "Stale decision rejected",
                node_instance_id=node_instance.id,
                attempted=status.value,
                actor_id=actor_id,
            )
            raise AlreadyDecidedError()

        await self.db.refresh(node_instance)
        logger.info(
            "Node instance decided",
            node_instance_id=node_instance.id,
            instance_id=node_instance.workflow_instance_id,
            status=status.value,
            actor_id=actor_id,
            duration=duration,
        )
        return node_instance

    async def terminate_open(
        self,
        instance_id: str,
        actor_id: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> int:
        """Mark every open row of an instance terminated.

        Returns:
            Number of rows closed
        """
        closed = 0
        for row in await self.open_for(instance_id):
            try:
                await self.decide(row, NodeInstanceStatus.TERMINATED, actor_id, comment)
            except AlreadyDecidedError:
                # Decided concurrently; it is closed either way
                continue
            closed += 1
        return closed

    # ─── Read ──────────────────────────────────────────────

    async def get(self, node_instance_id: str) -> Optional[WorkflowNodeInstance]:
        result = await self.db.execute(
            select(WorkflowNodeInstance).where(WorkflowNodeInstance.id == node_instance_id)
        )
        return result.scalar_one_or_none()

    async def open_for(self, instance_id: str) -> Sequence[WorkflowNodeInstance]:
        """Rows still awaiting a decision, in order."""
        result = await self.db.execute(
            select(WorkflowNodeInstance)
            .where(
                WorkflowNodeInstance.workflow_instance_id == instance_id,
                WorkflowNodeInstance.status.in_(OPEN_NODE_STATUSES),
            )
            .order_by(WorkflowNodeInstance.order)
        )
        return result.scalars().all()

    async def current_pending_for(self, instance_id: str) -> Optional[WorkflowNodeInstance]:
        """The first open row, or None when nothing awaits a decision."""
        rows = await self.open_for(instance_id)
        return rows[0] if rows else None

    async def history(self, instance_id: str) -> Sequence[WorkflowNodeInstance]:
        """Every row of an instance ordered by ``order``."""
        result = await self.db.execute(
            select(WorkflowNodeInstance)
            .where(WorkflowNodeInstance.workflow_instance_id == instance_id)
            .order_by(WorkflowNodeInstance.order)
        )
        return result.scalars().all()

    async def siblings(self, instance_id: str, node_id: str) -> Sequence[WorkflowNodeInstance]:
        """Rows of the latest visit to ``node_id`` (parallel fan-out)."""
        rows = [r for r in await self.history(instance_id) if r.node_id == node_id]
        if not rows:
            return []
        # A visit is a contiguous block of orders
        block = [rows[-1]]
        for row in reversed(rows[:-1]):
            if row.order != block[-1].order - 1:
                break
            block.append(row)
        return list(reversed(block))

    async def next_order(self, instance_id: str) -> int:
        result = await self.db.execute(
            select(func.max(WorkflowNodeInstance.order)).where(
                WorkflowNodeInstance.workflow_instance_id == instance_id
            )
        )
        return (result.scalar() or 0) + 1
