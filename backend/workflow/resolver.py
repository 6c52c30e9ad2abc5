"""Approver resolution: who must act on a workflow node.

Resolution is dispatched on the definition category:

- ``TieredStrategy`` (leave, overtime, expense by default): the position of
  the step decides. Step 1 goes to the initiator's supervisor, every later
  step to the administrative role.
- ``RuleStrategy`` (everything else): the node's declared assignee rule;
  a node that declares none goes to the administrative role.

An explicit assignee rule on a node always wins over the position-based
tiers. Resolution only reads the directory; it never writes.

Supervisor lookup never hands an instance back to its own initiator:
department manager, then parent department manager, then the first active
administrator other than the initiator. When nothing is left,
``NoEligibleApproverError`` is raised and the caller must not write
anything.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from core.constants import AssigneeType, NodeType
from core.exceptions import NoEligibleApproverError
from workflow.directory import Directory
from workflow.graph import AssigneeRule, Node

logger = structlog.get_logger(__name__)

USER_LIKE_TYPES = (
    AssigneeType.USER,
    AssigneeType.DYNAMIC,
    AssigneeType.INITIATOR,
    AssigneeType.SUPERVISOR,
)


@dataclass(frozen=True)
class Assignee:
    """A resolved assignee as recorded in the ledger."""

    assignee_type: AssigneeType
    assignee_id: str

    @property
    def is_user(self) -> bool:
        return self.assignee_type in USER_LIKE_TYPES


@dataclass(frozen=True)
class ResolutionContext:
    """Instance facts a strategy may depend on."""

    instance_id: Optional[str]
    initiator_id: str
    form_data: dict[str, Any]
    category: str
    step: int = 1
    previous_assignee: Optional[Assignee] = None


class ResolutionStrategy(ABC):
    """Maps a node to the rule(s) used to resolve its assignee(s)."""

    @abstractmethod
    def rules_for(self, node: Node, ctx: ResolutionContext, admin_role: str) -> list[AssigneeRule]:
        ...


class RuleStrategy(ResolutionStrategy):
    """Honour the node's declared rule; default to the administrative role."""

    def rules_for(self, node: Node, ctx: ResolutionContext, admin_role: str) -> list[AssigneeRule]:
        if node.type == NodeType.PARALLEL:
            return list(node.assignees)
        if node.assignee:
            return [node.assignee]
        return [AssigneeRule(type=AssigneeType.ROLE, id=admin_role)]


class TieredStrategy(RuleStrategy):
    """Step 1 → supervisor, later steps → administrative role."""

    def rules_for(self, node: Node, ctx: ResolutionContext, admin_role: str) -> list[AssigneeRule]:
        if node.type == NodeType.PARALLEL or node.assignee:
            return super().rules_for(node, ctx, admin_role)
        if ctx.step <= 1:
            return [AssigneeRule(type=AssigneeType.SUPERVISOR)]
        return [AssigneeRule(type=AssigneeType.ROLE, id=admin_role)]


class ApproverResolver:
    """Resolve assignees of approval and parallel nodes."""

    def __init__(
        self,
        directory: Directory,
        admin_role: str = "admin",
        tiered_categories: Optional[set[str]] = None,
        default_strategy: Optional[ResolutionStrategy] = None,
    ):
        self.directory = directory
        self.admin_role = admin_role
        self.default_strategy = default_strategy or RuleStrategy()
        self._strategies: dict[str, ResolutionStrategy] = {}
        tiered = TieredStrategy()
        for category in tiered_categories if tiered_categories is not None else {"leave", "overtime", "expense"}:
            self.register(category, tiered)

    def register(self, category: str, strategy: ResolutionStrategy) -> None:
        """Register (or replace) the strategy used for a category."""
        self._strategies[category.lower()] = strategy

    def strategy_for(self, category: Optional[str]) -> ResolutionStrategy:
        return self._strategies.get((category or "").lower(), self.default_strategy)

    # ─── Public API ────────────────────────────────────────

    async def resolve(self, node: Node, ctx: ResolutionContext) -> Assignee:
        """Resolve the single assignee of an approval node."""
        assignees = await self.resolve_all(node, ctx)
        return assignees[0]

    async def resolve_all(self, node: Node, ctx: ResolutionContext) -> list[Assignee]:
        """Resolve every assignee of a node (one per rule for parallel nodes).

        Raises:
            NoEligibleApproverError: if any rule cannot be satisfied
        """
        rules = self.strategy_for(ctx.category).rules_for(node, ctx, self.admin_role)
        if not rules:
            raise NoEligibleApproverError(f"Node '{node.id}' declares no assignee")

        resolved: list[Assignee] = []
        for rule in rules:
            assignee = await self.resolve_rule(rule, ctx)
            if assignee not in resolved:
                resolved.append(assignee)

        logger.debug(
            "Assignees resolved",
            node_id=node.id,
            category=ctx.category,
            step=ctx.step,
            assignees=[(a.assignee_type.value, a.assignee_id) for a in resolved],
        )
        return resolved

    async def resolve_rule(self, rule: AssigneeRule, ctx: ResolutionContext) -> Assignee:
        """Resolve one assignee rule against the directory."""
        kind = rule.type

        if kind == AssigneeType.INITIATOR:
            return Assignee(kind, ctx.initiator_id)

        if kind == AssigneeType.USER:
            await self._require_active_user(rule.id, f"user '{rule.id}'")
            return Assignee(kind, rule.id)

        if kind == AssigneeType.DYNAMIC:
            user_id = ctx.form_data.get(rule.field or "")
            if not user_id:
                raise NoEligibleApproverError(f"Form field '{rule.field}' names no approver")
            await self._require_active_user(str(user_id), f"form field '{rule.field}'")
            return Assignee(kind, str(user_id))

        if kind == AssigneeType.SUPERVISOR:
            subject = ctx.initiator_id
            if rule.relative_to == "previous" and ctx.previous_assignee and ctx.previous_assignee.is_user:
                subject = ctx.previous_assignee.assignee_id
            return Assignee(kind, await self.supervisor_of(subject, ctx.initiator_id))

        # Role and department assignments are recorded as declared
        assignee = Assignee(kind, rule.id)
        if not await self.eligible_users(assignee, ctx.initiator_id):
            raise NoEligibleApproverError(
                f"No eligible approver for {kind.value} '{rule.id}'"
            )
        return assignee

    async def supervisor_of(self, subject_id: str, initiator_id: str) -> str:
        """Find the supervisor of ``subject_id``, never returning the initiator.

        Walks: subject's department manager → parent department manager →
        first active administrator.
        """
        excluded = {subject_id, initiator_id}
        subject = await self.directory.get_user(subject_id)

        department_id = subject.department_id if subject else None
        for _ in range(2):
            if not department_id:
                break
            department = await self.directory.get_department(department_id)
            if not department:
                break
            manager_id = department.manager_id
            if manager_id and manager_id not in excluded and await self._is_active(manager_id):
                return manager_id
            department_id = department.parent_id

        for admin_id in await self.admins(exclude=excluded):
            logger.info(
                "Supervisor lookup fell back to administrator",
                subject_id=subject_id,
                approver_id=admin_id,
            )
            return admin_id

        raise NoEligibleApproverError(
            f"No supervisor or administrator can approve for user '{subject_id}'"
        )

    async def admins(self, exclude: set[str] = frozenset()) -> list[str]:
        """Active holders of the administrative role, in stable order."""
        holders = await self.directory.find_users_by_role(self.admin_role)
        result = []
        for user_id in sorted(holders):
            if user_id not in exclude and await self._is_active(user_id):
                result.append(user_id)
        return result

    async def is_admin(self, user_id: str) -> bool:
        user = await self.directory.get_user(user_id)
        return bool(user and user.is_active and self.admin_role in user.roles)

    async def eligible_users(self, assignee: Assignee, initiator_id: Optional[str] = None) -> list[str]:
        """Expand an assignee into the concrete users allowed to act."""
        if assignee.is_user:
            return [assignee.assignee_id]

        if assignee.assignee_type == AssigneeType.ROLE:
            candidates = await self.directory.find_users_by_role(assignee.assignee_id)
        else:
            candidates = await self.directory.find_users_in_department(assignee.assignee_id)

        eligible = []
        for user_id in sorted(candidates):
            if user_id != initiator_id and await self._is_active(user_id):
                eligible.append(user_id)
        return eligible

    async def is_eligible(self, user_id: str, assignee: Assignee, initiator_id: Optional[str] = None) -> bool:
        return user_id in await self.eligible_users(assignee, initiator_id)

    # ─── Helpers ───────────────────────────────────────────

    async def _is_active(self, user_id: str) -> bool:
        user = await self.directory.get_user(user_id)
        return bool(user and user.is_active)

    async def _require_active_user(self, user_id: Optional[str], label: str) -> None:
        if not user_id or not await self._is_active(user_id):
            raise NoEligibleApproverError(f"Approver from {label} does not exist or is inactive")
