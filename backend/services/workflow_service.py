"""Workflow service: the façade the request layer talks to.

Composes the definition store, the approver resolver, the node instance
ledger and the state machine. Mutations are confined to
``workflow_instances`` and ``workflow_node_instances``; committing them is
left to the request-scoped session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from core.constants import (
    AssigneeType,
    InstanceStatus,
    NodeInstanceStatus,
    OPEN_NODE_STATUSES,
    Priority,
)
from core.exceptions import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from core.utils import to_naive_utc
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_node_instance import WorkflowNodeInstance
from db.models.user import User
from services.base import BaseService
from services.definition_service import DefinitionService
from services.directory_service import DirectoryService
from workflow.directory import Directory
from workflow.form_schema import validate_form_data
from workflow.graph import DefinitionGraph
from workflow.ledger import NodeInstanceLedger
from workflow.resolver import ApproverResolver, Assignee
from workflow.state_machine import WorkflowStateMachine, replay

logger = logging.getLogger(__name__)


@dataclass
class PendingItem:
    """An open step waiting on a user."""

    instance_id: str
    node_instance_id: str
    title: str
    due_date: Optional[datetime]
    definition_code: str
    definition_name: str
    category: str
    node_id: str
    node_name: str
    initiator_id: str
    priority: str
    assignee_type: str
    assignee_id: str
    start_time: Optional[datetime]


@dataclass
class InstanceDetail:
    """An instance with its audit trail and who may act next."""

    instance: WorkflowInstance
    definition: WorkflowDefinition
    history: list[WorkflowNodeInstance]
    eligible_assignees: list[str] = field(default_factory=list)


class WorkflowService(BaseService[WorkflowInstance]):
    """Service for workflow instances.

    Usage:
        service = WorkflowService(db)
        instance = await service.create_instance("leave-2step", "Annual leave", form, user_id)
        await service.submit(instance.id, user_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        directory: Optional[Directory] = None,
        resolver: Optional[ApproverResolver] = None,
    ):
        super().__init__(WorkflowInstance, db)
        settings = settings or get_settings()
        self.directory = directory or DirectoryService(db)
        self.resolver = resolver or ApproverResolver(
            self.directory,
            admin_role=settings.ADMIN_ROLE_CODE,
            tiered_categories=settings.tiered_categories,
        )
        self.ledger = NodeInstanceLedger(db)
        self.machine = WorkflowStateMachine(
            db,
            self.resolver,
            self.ledger,
            admin_override=settings.ADMIN_OVERRIDE_ENABLED,
        )
        self.definitions = DefinitionService(db)

    # ─── Create / edit ─────────────────────────────────────

    async def create_instance(
        self,
        definition_code: str,
        title: str,
        form_data: dict[str, Any],
        initiator_id: str,
        business_key: Optional[str] = None,
        priority: str = Priority.MEDIUM.value,
        due_date: Optional[datetime] = None,
    ) -> WorkflowInstance:
        """Create a draft instance of the active version of ``definition_code``.

        Raises:
            NotFoundError: No active definition for the code, or unknown initiator
            ValidationError: ``form_data`` violates the definition's form schema
        """
        initiator = await self.directory.get_user(initiator_id)
        if not initiator or not initiator.is_active:
            raise NotFoundError(f"User {initiator_id} not found")

        definition = await self.definitions.get_active_by_code(definition_code)
        normalized = validate_form_data(definition.form_schema, form_data)
        graph = DefinitionGraph.parse(definition.node_config)

        instance = await self.create({
            "definition_id": definition.id,
            "business_key": business_key,
            "title": self._require_title(title),
            "form_data": normalized,
            "current_node_id": graph.start_node.id,
            "status": InstanceStatus.DRAFT.value,
            "initiator_id": initiator_id,
            "priority": self._priority(priority),
            "due_date": to_naive_utc(due_date),
        })
        logger.info(
            "Workflow instance %s created from %s v%d by %s",
            instance.id, definition.code, definition.version, initiator_id,
        )
        return instance

    async def update_draft(
        self,
        instance_id: str,
        actor_id: str,
        title: Optional[str] = None,
        form_data: Optional[dict[str, Any]] = None,
        business_key: Optional[str] = None,
        priority: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> WorkflowInstance:
        """Edit a draft before it is submitted (initiator only)."""
        instance = await self.get_instance_row(instance_id)
        if actor_id != instance.initiator_id:
            raise ForbiddenError("Only the initiator may edit this workflow")
        if instance.status_enum != InstanceStatus.DRAFT:
            raise InvalidTransitionError(f"Cannot edit a workflow in status '{instance.status}'")

        if form_data is not None:
            definition = await self.definitions.get(instance.definition_id)
            instance.form_data = validate_form_data(definition.form_schema, form_data)
        if title is not None:
            instance.title = self._require_title(title)
        if business_key is not None:
            instance.business_key = business_key
        if priority is not None:
            instance.priority = self._priority(priority)
        if due_date is not None:
            instance.due_date = to_naive_utc(due_date)

        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def resubmit(
        self,
        instance_id: str,
        actor_id: str,
        form_data: Optional[dict[str, Any]] = None,
        title: Optional[str] = None,
    ) -> WorkflowInstance:
        """Start over after a rejection.

        The rejected instance keeps its status and history. A new draft is
        created from the active version of the same definition code, with
        the previous (or amended) form data, and points back to it through
        ``resubmitted_from_id``.
        """
        previous = await self.get_instance_row(instance_id)
        if actor_id != previous.initiator_id:
            raise ForbiddenError("Only the initiator may resubmit this workflow")
        if previous.status_enum != InstanceStatus.REJECTED:
            raise InvalidTransitionError("Only rejected workflows can be resubmitted")

        old_definition = await self.definitions.get(previous.definition_id)
        instance = await self.create_instance(
            definition_code=old_definition.code,
            title=title or previous.title,
            form_data=form_data if form_data is not None else dict(previous.form_data or {}),
            initiator_id=actor_id,
            business_key=previous.business_key,
            priority=previous.priority,
            due_date=previous.due_date,
        )
        instance.resubmitted_from_id = previous.id
        await self.db.flush()
        await self.db.refresh(instance)
        logger.info("Workflow instance %s resubmitted as %s", previous.id, instance.id)
        return instance

    # ─── Transitions ───────────────────────────────────────

    async def submit(self, instance_id: str, actor_id: str, comment: Optional[str] = None) -> WorkflowInstance:
        instance = await self.get_instance_row(instance_id)
        return await self.machine.submit(instance, actor_id, comment)

    async def approve(self, instance_id: str, actor_id: str, comment: Optional[str] = None) -> WorkflowInstance:
        instance = await self.get_instance_row(instance_id)
        return await self.machine.approve(instance, actor_id, comment)

    async def reject(self, instance_id: str, actor_id: str, comment: Optional[str] = None) -> WorkflowInstance:
        instance = await self.get_instance_row(instance_id)
        return await self.machine.reject(instance, actor_id, comment)

    async def cancel(self, instance_id: str, actor_id: str, reason: Optional[str] = None) -> WorkflowInstance:
        instance = await self.get_instance_row(instance_id)
        return await self.machine.cancel(instance, actor_id, reason)

    async def terminate(self, instance_id: str, actor_id: str, reason: Optional[str] = None) -> WorkflowInstance:
        instance = await self.get_instance_row(instance_id)
        return await self.machine.terminate(instance, actor_id, reason)

    # ─── Queries ───────────────────────────────────────────

    async def get_instance_row(self, instance_id: str) -> WorkflowInstance:
        instance = await self.get_by_id(instance_id)
        if not instance:
            raise NotFoundError(f"Workflow instance {instance_id} not found")
        return instance

    async def get_instance(self, instance_id: str, viewer_id: Optional[str] = None) -> InstanceDetail:
        """Instance, ordered history and the users who may act next.

        With ``viewer_id``, only the initiator, a user involved in any step,
        or an administrator may look.
        """
        instance = await self.get_instance_row(instance_id)
        definition = await self.definitions.get(instance.definition_id)
        history = list(await self.ledger.history(instance.id))
        eligible = await self.machine.eligible_users(instance)

        if viewer_id is not None and not await self._can_view(instance, history, eligible, viewer_id):
            raise ForbiddenError("Not allowed to view this workflow")

        self._check_consistency(instance, definition, history)
        return InstanceDetail(
            instance=instance,
            definition=definition,
            history=history,
            eligible_assignees=eligible,
        )

    async def list_pending_for(
        self,
        user_id: str,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[PendingItem], int]:
        """Open steps the user may decide, oldest first."""
        user = await self.directory.get_user(user_id)
        if not user or not user.is_active:
            return [], 0

        user_like = [t.value for t in (
            AssigneeType.USER,
            AssigneeType.DYNAMIC,
            AssigneeType.INITIATOR,
            AssigneeType.SUPERVISOR,
        )]
        mine = [
            and_(
                WorkflowNodeInstance.assignee_type.in_(user_like),
                WorkflowNodeInstance.assignee_id == user_id,
            )
        ]
        group = []
        if user.roles:
            group.append(and_(
                WorkflowNodeInstance.assignee_type == AssigneeType.ROLE.value,
                WorkflowNodeInstance.assignee_id.in_(list(user.roles)),
            ))
        if user.department_id:
            group.append(and_(
                WorkflowNodeInstance.assignee_type == AssigneeType.DEPARTMENT.value,
                WorkflowNodeInstance.assignee_id == user.department_id,
            ))
        if group:
            # Nobody approves their own request through a role or department
            mine.append(and_(or_(*group), WorkflowInstance.initiator_id != user_id))

        conditions = [
            WorkflowNodeInstance.status.in_(OPEN_NODE_STATUSES),
            WorkflowInstance.status == InstanceStatus.PROCESSING.value,
            or_(*mine),
        ]
        base = (
            select(WorkflowNodeInstance, WorkflowInstance, WorkflowDefinition)
            .join(WorkflowInstance, WorkflowInstance.id == WorkflowNodeInstance.workflow_instance_id)
            .join(WorkflowDefinition, WorkflowDefinition.id == WorkflowInstance.definition_id)
            .where(*conditions)
        )
        result = await self.db.execute(
            base.order_by(WorkflowNodeInstance.start_time, WorkflowNodeInstance.order)
            .offset(offset)
            .limit(limit)
        )
        count = await self.db.execute(
            select(func.count())
            .select_from(WorkflowNodeInstance)
            .join(WorkflowInstance, WorkflowInstance.id == WorkflowNodeInstance.workflow_instance_id)
            .where(*conditions)
        )

        items = [
            PendingItem(
                instance_id=instance.id,
                node_instance_id=row.id,
                title=instance.title,
                due_date=instance.due_date,
                definition_code=definition.code,
                definition_name=definition.name,
                category=definition.category,
                node_id=row.node_id,
                node_name=row.node_name,
                initiator_id=instance.initiator_id,
                priority=instance.priority,
                assignee_type=row.assignee_type,
                assignee_id=row.assignee_id,
                start_time=row.start_time,
            )
            for row, instance, definition in result.all()
        ]
        return items, count.scalar() or 0

    async def list_initiated_by(
        self,
        user_id: str,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[WorkflowInstance], int]:
        """Instances the user started, newest first."""
        self._check_status(status)
        return await self.list(
            offset=offset,
            limit=limit,
            filters={"initiator_id": user_id, "status": status},
        )

    async def list_decided_by(
        self,
        user_id: str,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[WorkflowInstance], int]:
        """Instances in which the user approved or rejected a step."""
        decided = (
            select(WorkflowNodeInstance.workflow_instance_id)
            .where(
                WorkflowNodeInstance.actor_id == user_id,
                WorkflowNodeInstance.status.in_([
                    NodeInstanceStatus.APPROVED.value,
                    NodeInstanceStatus.REJECTED.value,
                ]),
            )
        )
        return await self._page(
            [WorkflowInstance.id.in_(decided)],
            offset,
            limit,
            order_by=WorkflowInstance.updated_at,
        )

    async def list_for_department(
        self,
        viewer_id: str,
        department_id: str,
        category: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[WorkflowInstance], int]:
        """Instances started by members of a department, newest first.

        Only the department's manager or an administrator may list them.
        Membership is the initiator's current department; sub-departments
        are not included. ``category`` filters on the definition category.

        Raises:
            NotFoundError: unknown department
            ForbiddenError: the viewer manages neither the department nor
                the system
        """
        department = await self.directory.get_department(department_id)
        if department is None:
            raise NotFoundError(f"Department {department_id} not found")
        if viewer_id != department.manager_id and not await self.resolver.is_admin(viewer_id):
            raise ForbiddenError("Only the department manager or an administrator may list its workflows")
        self._check_status(status)

        conditions = [
            WorkflowInstance.initiator_id.in_(
                select(User.id).where(User.department_id == department_id)
            )
        ]
        if status is not None:
            conditions.append(WorkflowInstance.status == status)
        if category is not None:
            conditions.append(
                WorkflowInstance.definition_id.in_(
                    select(WorkflowDefinition.id).where(WorkflowDefinition.category == category)
                )
            )
        return await self._page(conditions, offset, limit)

    # ─── Helpers ───────────────────────────────────────────

    async def _page(
        self,
        conditions: list,
        offset: int,
        limit: int,
        order_by=WorkflowInstance.created_at,
    ) -> tuple[Sequence[WorkflowInstance], int]:
        conditions = [*conditions, WorkflowInstance.is_deleted == False]
        result = await self.db.execute(
            select(WorkflowInstance)
            .where(*conditions)
            .order_by(order_by.desc())
            .offset(offset)
            .limit(limit)
        )
        count = await self.db.execute(
            select(func.count()).select_from(WorkflowInstance).where(*conditions)
        )
        return result.scalars().all(), count.scalar() or 0

    @staticmethod
    def _check_status(status: Optional[str]) -> None:
        if status is None:
            return
        try:
            InstanceStatus(status)
        except ValueError:
            raise ValidationError("Invalid status filter", [f"status: unknown value '{status}'"])

    async def _can_view(
        self,
        instance: WorkflowInstance,
        history: list[WorkflowNodeInstance],
        eligible: list[str],
        viewer_id: str,
    ) -> bool:
        if viewer_id == instance.initiator_id or viewer_id in eligible:
            return True
        for row in history:
            if row.actor_id == viewer_id:
                return True
            assignee = Assignee(AssigneeType(row.assignee_type), row.assignee_id)
            if await self.resolver.is_eligible(viewer_id, assignee, instance.initiator_id):
                return True
        return await self.resolver.is_admin(viewer_id)

    def _check_consistency(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        history: list[WorkflowNodeInstance],
    ) -> None:
        graph = DefinitionGraph.parse(definition.node_config)
        status, node_id = replay(graph, history, instance.form_data or {}, overlay=instance.status_enum)
        if status != instance.status_enum or node_id != instance.current_node_id:
            logger.error(
                "Workflow instance %s diverges from its ledger: stored=(%s, %s) replayed=(%s, %s)",
                instance.id, instance.status, instance.current_node_id, status.value, node_id,
            )

    @staticmethod
    def _require_title(title: Optional[str]) -> str:
        if not title or not title.strip():
            raise ValidationError("Title is required", ["title: must not be empty"])
        return title.strip()

    @staticmethod
    def _priority(priority: str) -> str:
        try:
            return Priority(priority).value
        except ValueError:
            raise ValidationError("Invalid priority", [f"priority: unknown value '{priority}'"])
