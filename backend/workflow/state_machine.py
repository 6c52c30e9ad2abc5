"""
Workflow Instance State Machine.

Owns every mutation of ``workflow_instances.status`` and drives the ledger:

    draft ──submit──▶ processing ──approve (last step)──▶ approved
      │                 │  ▲
      │                 │  └──approve (more steps)
      │                 ├──reject──▶ rejected
      │                 └──terminate (admin)──▶ terminated
      └──────cancel─────┴──▶ canceled

Every transition follows the same order:

1. Guard: the event is allowed from the current status and the actor has
   authority.
2. Resolve: the next assignee(s) are computed before anything is written,
   so a ``NoEligibleApproverError`` leaves instance and ledger untouched.
3. Write: the node instance is decided with a conditional update, then the
   instance status moves with a conditional update on the expected status.
   Decisions on a parallel node first row-lock the instance so the last
   sibling approver always sees the others and advances the instance.

Completion is graph-based: after a decision the graph is walked forward
through condition and service nodes until the next approval/parallel node
or an end node.
"""

from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import (
    AssigneeType,
    InstanceStatus,
    NodeInstanceStatus,
    NodeType,
    OPEN_NODE_STATUSES,
)
from core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NoEligibleApproverError,
    NotFoundError,
)
from core.utils import utc_now
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_node_instance import WorkflowNodeInstance
from workflow.graph import DefinitionGraph, Node
from workflow.ledger import NodeInstanceLedger
from workflow.resolver import ApproverResolver, Assignee, ResolutionContext

logger = structlog.get_logger(__name__)


# Event → statuses it may fire from
TRANSITIONS: dict[str, tuple[InstanceStatus, ...]] = {
    "submit": (InstanceStatus.DRAFT,),
    "approve": (InstanceStatus.PROCESSING,),
    "reject": (InstanceStatus.PROCESSING,),
    "cancel": (InstanceStatus.DRAFT, InstanceStatus.PROCESSING),
    "terminate": (InstanceStatus.PROCESSING,),
}


def can_fire(event: str, status: InstanceStatus) -> bool:
    return status in TRANSITIONS.get(event, ())


def replay(
    graph: DefinitionGraph,
    history: Sequence[WorkflowNodeInstance],
    form_data: dict[str, Any],
    overlay: Optional[InstanceStatus] = None,
) -> tuple[InstanceStatus, Optional[str]]:
    """Reconstruct ``(status, current_node_id)`` from an ordered ledger.

    ``overlay`` is the status recorded on the instance. It is consulted only
    for outcomes the ledger cannot tell apart: an empty history (a draft,
    a canceled draft, or a graph without approval steps) and terminated
    rows (canceled by the initiator or terminated by an administrator).
    """
    if not history:
        if overlay is not None and overlay.is_terminal:
            return overlay, None
        return InstanceStatus.DRAFT, graph.start_node.id

    # Contiguous rows of one node form one visit
    visits: list[list[WorkflowNodeInstance]] = []
    for row in history:
        if visits and visits[-1][0].node_id == row.node_id:
            visits[-1].append(row)
        else:
            visits.append([row])

    current_node_id: Optional[str] = None
    for visit in visits:
        node_id = visit[0].node_id
        statuses = {row.status for row in visit}

        if NodeInstanceStatus.REJECTED.value in statuses:
            return InstanceStatus.REJECTED, None
        if NodeInstanceStatus.TERMINATED.value in statuses:
            if overlay in (InstanceStatus.CANCELED, InstanceStatus.TERMINATED):
                return overlay, None
            return InstanceStatus.TERMINATED, None
        if statuses & set(OPEN_NODE_STATUSES):
            return InstanceStatus.PROCESSING, node_id

        following = graph.next_actionable(node_id, form_data)
        if following is None:
            return InstanceStatus.APPROVED, None
        current_node_id = following.id

    # Last visit approved but its successor has no row yet
    return InstanceStatus.PROCESSING, current_node_id


class WorkflowStateMachine:
    """Applies transitions to one instance at a time."""

    def __init__(
        self,
        db: AsyncSession,
        resolver: ApproverResolver,
        ledger: Optional[NodeInstanceLedger] = None,
        admin_override: bool = True,
    ):
        self.db = db
        self.resolver = resolver
        self.ledger = ledger or NodeInstanceLedger(db)
        self.admin_override = admin_override

    # ─── Transitions ───────────────────────────────────────

    async def submit(
        self,
        instance: WorkflowInstance,
        actor_id: str,
        comment: Optional[str] = None,
    ) -> WorkflowInstance:
        """draft → processing, or straight to approved when no step applies."""
        if actor_id != instance.initiator_id:
            raise ForbiddenError("Only the initiator may submit this workflow")
        self._guard("submit", instance)

        definition = await self._definition(instance)
        graph = DefinitionGraph.parse(definition.node_config)
        first = graph.first_actionable(instance.form_data or {})

        if first is None:
            now = utc_now()
            await self._move(
                instance,
                InstanceStatus.DRAFT,
                InstanceStatus.APPROVED,
                current_node_id=None,
                start_time=now,
                end_time=now,
                submit_comment=comment,
            )
            logger.info("Workflow approved without approval steps", instance_id=instance.id)
            return instance

        assignees = await self._resolve(first, instance, definition, step=1)

        await self._move(
            instance,
            InstanceStatus.DRAFT,
            InstanceStatus.PROCESSING,
            current_node_id=first.id,
            start_time=utc_now(),
            submit_comment=comment,
        )
        await self._enter(instance, first, assignees)

        logger.info(
            "Workflow submitted",
            instance_id=instance.id,
            node_id=first.id,
            initiator_id=actor_id,
        )
        return instance

    async def approve(
        self,
        instance: WorkflowInstance,
        actor_id: str,
        comment: Optional[str] = None,
    ) -> WorkflowInstance:
        """Approve the actor's open step and advance or complete."""
        self._guard("approve", instance)
        row = await self._actionable_row(instance, actor_id)

        definition = await self._definition(instance)
        graph = DefinitionGraph.parse(definition.node_config)
        node = graph.node(row.node_id)
        if node.type == NodeType.PARALLEL:
            await self._lock_instance(instance, row.node_id)

        open_siblings = [
            r for r in await self.ledger.open_for(instance.id)
            if r.node_id == row.node_id and r.id != row.id
        ]

        # Resolve before writing anything
        next_node: Optional[Node] = None
        next_assignees: list[Assignee] = []
        if not open_siblings:
            next_node, next_assignees = await self._plan_next(instance, definition, graph, node, row)

        await self.ledger.decide(row, NodeInstanceStatus.APPROVED, actor_id, comment)

        if open_siblings:
            still_open = [
                r for r in await self.ledger.open_for(instance.id) if r.node_id == row.node_id
            ]
            if still_open:
                logger.info(
                    "Parallel branch approved",
                    instance_id=instance.id,
                    node_id=row.node_id,
                    remaining=len(still_open),
                )
                return instance
            next_node, next_assignees = await self._plan_next(instance, definition, graph, node, row)

        if next_node is None:
            await self._move(
                instance,
                InstanceStatus.PROCESSING,
                InstanceStatus.APPROVED,
                current_node_id=None,
                end_time=utc_now(),
            )
            logger.info("Workflow approved", instance_id=instance.id, actor_id=actor_id)
            return instance

        await self._move(
            instance,
            InstanceStatus.PROCESSING,
            InstanceStatus.PROCESSING,
            current_node_id=next_node.id,
        )
        await self._enter(instance, next_node, next_assignees)
        logger.info(
            "Workflow advanced",
            instance_id=instance.id,
            from_node=row.node_id,
            to_node=next_node.id,
            actor_id=actor_id,
        )
        return instance

    async def reject(
        self,
        instance: WorkflowInstance,
        actor_id: str,
        comment: Optional[str] = None,
    ) -> WorkflowInstance:
        """Reject the actor's open step; the instance ends rejected."""
        self._guard("reject", instance)
        row = await self._actionable_row(instance, actor_id)

        await self.ledger.decide(row, NodeInstanceStatus.REJECTED, actor_id, comment)
        await self.ledger.terminate_open(instance.id, actor_id, "Sibling step rejected")
        await self._move(
            instance,
            InstanceStatus.PROCESSING,
            InstanceStatus.REJECTED,
            current_node_id=None,
            end_time=utc_now(),
        )
        logger.info(
            "Workflow rejected",
            instance_id=instance.id,
            node_id=row.node_id,
            actor_id=actor_id,
        )
        return instance

    async def cancel(
        self,
        instance: WorkflowInstance,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> WorkflowInstance:
        """Withdraw a draft or running instance (initiator or admin)."""
        if actor_id != instance.initiator_id and not await self.resolver.is_admin(actor_id):
            raise ForbiddenError("Only the initiator or an administrator may cancel this workflow")
        self._guard("cancel", instance)

        expected = instance.status_enum
        await self.ledger.terminate_open(instance.id, actor_id, reason or "Canceled")
        await self._move(
            instance,
            expected,
            InstanceStatus.CANCELED,
            current_node_id=None,
            end_time=utc_now(),
            cancel_reason=reason,
        )
        logger.info("Workflow canceled", instance_id=instance.id, actor_id=actor_id)
        return instance

    async def terminate(
        self,
        instance: WorkflowInstance,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> WorkflowInstance:
        """Force-stop a running instance (admin only)."""
        if not await self.resolver.is_admin(actor_id):
            raise ForbiddenError("Only an administrator may terminate a workflow")
        self._guard("terminate", instance)

        await self.ledger.terminate_open(instance.id, actor_id, reason or "Terminated by administrator")
        await self._move(
            instance,
            InstanceStatus.PROCESSING,
            InstanceStatus.TERMINATED,
            current_node_id=None,
            end_time=utc_now(),
            cancel_reason=reason,
        )
        logger.warning("Workflow terminated", instance_id=instance.id, actor_id=actor_id)
        return instance

    # ─── Authority ─────────────────────────────────────────

    async def eligible_users(self, instance: WorkflowInstance) -> list[str]:
        """Users who may act on the instance's open step(s) right now."""
        users: list[str] = []
        for row in await self.ledger.open_for(instance.id):
            assignee = _assignee_of(row)
            for user_id in await self.resolver.eligible_users(assignee, instance.initiator_id):
                if user_id not in users:
                    users.append(user_id)
        return users

    async def _actionable_row(self, instance: WorkflowInstance, actor_id: str) -> WorkflowNodeInstance:
        """The open row ``actor_id`` may decide.

        Raises:
            InvalidTransitionError: nothing is open, or the actor is not an
                assignee of any open row
        """
        rows = await self.ledger.open_for(instance.id)
        if not rows:
            raise InvalidTransitionError("Workflow has no step awaiting a decision")

        for row in rows:
            if await self.resolver.is_eligible(actor_id, _assignee_of(row), instance.initiator_id):
                return row

        if (
            self.admin_override
            and actor_id != instance.initiator_id
            and await self.resolver.is_admin(actor_id)
        ):
            logger.info(
                "Administrator override",
                instance_id=instance.id,
                node_id=rows[0].node_id,
                actor_id=actor_id,
            )
            return rows[0]

        raise InvalidTransitionError("Actor is not an assignee of the current step")

    # ─── Helpers ───────────────────────────────────────────

    def _guard(self, event: str, instance: WorkflowInstance) -> None:
        if not can_fire(event, instance.status_enum):
            raise InvalidTransitionError(
                f"Cannot {event} a workflow in status '{instance.status}'"
            )

    async def _definition(self, instance: WorkflowInstance) -> WorkflowDefinition:
        definition = await self.db.get(WorkflowDefinition, instance.definition_id)
        if not definition:
            raise NotFoundError(f"Workflow definition {instance.definition_id} not found")
        return definition

    async def _plan_next(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        graph: DefinitionGraph,
        node: Node,
        row: WorkflowNodeInstance,
    ) -> tuple[Optional[Node], list[Assignee]]:
        next_node = graph.next_actionable(node.id, instance.form_data or {})
        if next_node is None:
            return None, []
        history = await self.ledger.history(instance.id)
        step = len({r.node_id for r in history}) + 1
        assignees = await self._resolve(
            next_node, instance, definition, step=step, previous=_assignee_of(row)
        )
        return next_node, assignees

    async def _resolve(
        self,
        node: Node,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: int,
        previous: Optional[Assignee] = None,
    ) -> list[Assignee]:
        ctx = ResolutionContext(
            instance_id=instance.id,
            initiator_id=instance.initiator_id,
            form_data=instance.form_data or {},
            category=definition.category,
            step=step,
            previous_assignee=previous,
        )
        try:
            return await self.resolver.resolve_all(node, ctx)
        except NoEligibleApproverError as e:
            logger.error(
                "No eligible approver",
                instance_id=instance.id,
                definition_code=definition.code,
                node_id=node.id,
                error=e.message,
            )
            raise

    async def _enter(self, instance: WorkflowInstance, node: Node, assignees: list[Assignee]) -> None:
        order = await self.ledger.next_order(instance.id)
        if node.type != NodeType.PARALLEL:
            assignees = assignees[:1]
        for offset, assignee in enumerate(assignees):
            await self.ledger.append(instance, node, assignee, order + offset)

    async def _lock_instance(self, instance: WorkflowInstance, node_id: str) -> None:
        """Row-lock the instance while it waits at ``node_id``.

        Deciders of one parallel node update different ledger rows, so only
        the instance row orders them. Reads issued after the lock see every
        sibling decision committed before it was granted.
        """
        result = await self.db.execute(
            update(WorkflowInstance)
            .where(
                WorkflowInstance.id == instance.id,
                WorkflowInstance.status == InstanceStatus.PROCESSING.value,
                WorkflowInstance.current_node_id == node_id,
            )
            .values(current_node_id=node_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransitionError("Workflow moved on while the decision was being made")

    async def _move(
        self,
        instance: WorkflowInstance,
        expected: InstanceStatus,
        target: InstanceStatus,
        **values: Any,
    ) -> None:
        """Conditionally move the instance from ``expected`` to ``target``."""
        result = await self.db.execute(
            update(WorkflowInstance)
            .where(
                WorkflowInstance.id == instance.id,
                WorkflowInstance.status == expected.value,
            )
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransitionError(
                f"Workflow status changed concurrently (expected '{expected.value}')"
            )
        await self.db.refresh(instance)


def _assignee_of(row: WorkflowNodeInstance) -> Assignee:
    return Assignee(AssigneeType(row.assignee_type), row.assignee_id)
