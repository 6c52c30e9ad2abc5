"""Tests for approver resolution against an in-memory directory."""

import pytest

from core.constants import AssigneeType
from core.exceptions import NoEligibleApproverError
from workflow.graph import AssigneeRule, DefinitionGraph
from workflow.resolver import (
    ApproverResolver,
    Assignee,
    ResolutionContext,
    RuleStrategy,
    TieredStrategy,
)


def _node(assignee=None, assignees=None, node_type="approval"):
    raw = {"id": "step", "type": node_type, "name": "Step"}
    if assignee:
        raw["assignee"] = assignee
    if assignees:
        raw["assignees"] = assignees
    graph = DefinitionGraph.parse({
        "nodes": [{"id": "start", "type": "start"}, raw, {"id": "end", "type": "end"}]
    })
    return graph.node("step")


def _ctx(initiator="u1", category="generic", step=1, form_data=None, previous=None):
    return ResolutionContext(
        instance_id="wi-1",
        initiator_id=initiator,
        form_data=form_data or {},
        category=category,
        step=step,
        previous_assignee=previous,
    )


@pytest.mark.unit
class TestRuleResolution:

    async def test_initiator(self, directory):
        resolver = ApproverResolver(directory)
        assignee = await resolver.resolve(_node({"type": "initiator"}), _ctx())
        assert assignee == Assignee(AssigneeType.INITIATOR, "u1")

    async def test_explicit_user(self, directory):
        resolver = ApproverResolver(directory)
        assignee = await resolver.resolve(_node({"type": "user", "id": "ceo"}), _ctx())
        assert assignee == Assignee(AssigneeType.USER, "ceo")

    async def test_inactive_user_fails(self, directory):
        directory.add_user("ceo", "hq", is_active=False)
        resolver = ApproverResolver(directory)
        with pytest.raises(NoEligibleApproverError):
            await resolver.resolve(_node({"type": "user", "id": "ceo"}), _ctx())

    async def test_dynamic_from_form_field(self, directory):
        resolver = ApproverResolver(directory)
        node = _node({"type": "dynamic", "field": "approver"})
        assignee = await resolver.resolve(node, _ctx(form_data={"approver": "u2"}))
        assert assignee == Assignee(AssigneeType.DYNAMIC, "u2")

    async def test_dynamic_missing_field(self, directory):
        resolver = ApproverResolver(directory)
        node = _node({"type": "dynamic", "field": "approver"})
        with pytest.raises(NoEligibleApproverError):
            await resolver.resolve(node, _ctx())

    async def test_role_is_recorded_as_declared(self, directory):
        resolver = ApproverResolver(directory)
        assignee = await resolver.resolve(_node({"type": "role", "id": "admin"}), _ctx())
        assert assignee == Assignee(AssigneeType.ROLE, "admin")

    async def test_role_without_holders(self, directory):
        resolver = ApproverResolver(directory)
        with pytest.raises(NoEligibleApproverError):
            await resolver.resolve(_node({"type": "role", "id": "finance"}), _ctx())

    async def test_department(self, directory):
        resolver = ApproverResolver(directory)
        assignee = await resolver.resolve(_node({"type": "department", "id": "eng"}), _ctx())
        assert assignee == Assignee(AssigneeType.DEPARTMENT, "eng")

    async def test_no_rule_defaults_to_admin_role(self, directory):
        resolver = ApproverResolver(directory)
        assignee = await resolver.resolve(_node(), _ctx())
        assert assignee == Assignee(AssigneeType.ROLE, "admin")

    async def test_parallel_resolves_every_rule(self, directory):
        resolver = ApproverResolver(directory)
        node = _node(
            node_type="parallel",
            assignees=[
                {"type": "user", "id": "m1"},
                {"type": "user", "id": "ceo"},
                {"type": "user", "id": "m1"},
            ],
        )
        assignees = await resolver.resolve_all(node, _ctx())
        assert [a.assignee_id for a in assignees] == ["m1", "ceo"]


@pytest.mark.unit
class TestSupervisor:

    async def test_department_manager(self, directory):
        resolver = ApproverResolver(directory)
        assert await resolver.supervisor_of("u1", "u1") == "m1"

    async def test_manager_walks_up_to_parent(self, directory):
        resolver = ApproverResolver(directory)
        assert await resolver.supervisor_of("m1", "m1") == "ceo"

    async def test_inactive_manager_skipped(self, directory):
        directory.add_user("m1", "eng", is_active=False)
        resolver = ApproverResolver(directory)
        assert await resolver.supervisor_of("u1", "u1") == "ceo"

    async def test_top_of_tree_falls_back_to_admin(self, directory):
        resolver = ApproverResolver(directory)
        assert await resolver.supervisor_of("ceo", "ceo") == "admin"

    async def test_user_without_department_falls_back_to_admin(self, directory):
        directory.add_user("contractor")
        resolver = ApproverResolver(directory)
        assert await resolver.supervisor_of("contractor", "contractor") == "admin"

    async def test_never_returns_initiator(self, directory):
        # Supervisor of the previous approver when that chain leads back to the initiator
        resolver = ApproverResolver(directory)
        assert await resolver.supervisor_of("u1", "m1") == "ceo"


    async def test_no_alternative_raises(self, directory):
        del directory.users["admin"]
        resolver = ApproverResolver(directory)
        with pytest.raises(NoEligibleApproverError):
            await resolver.supervisor_of("ceo", "ceo")

    async def test_admin_never_approves_own_request(self, directory):
        resolver = ApproverResolver(directory)
        with pytest.raises(NoEligibleApproverError):
            await resolver.supervisor_of("admin", "admin")

    async def test_relative_to_previous_approver(self, directory):
        resolver = ApproverResolver(directory)
        node = _node({"type": "supervisor", "relativeTo": "previous"})
        ctx = _ctx(initiator="u1", step=2, previous=Assignee(AssigneeType.SUPERVISOR, "m1"))
        assignee = await resolver.resolve(node, ctx)
        assert assignee == Assignee(AssigneeType.SUPERVISOR, "ceo")


@pytest.mark.unit
class TestStrategies:

    async def test_tiered_categories_by_position(self, directory):
        resolver = ApproverResolver(directory)
        node = _node()
        first = await resolver.resolve(node, _ctx(category="leave", step=1))
        second = await resolver.resolve(node, _ctx(category="leave", step=2))
        assert first == Assignee(AssigneeType.SUPERVISOR, "m1")
        assert second == Assignee(AssigneeType.ROLE, "admin")

    async def test_category_lookup_is_case_insensitive(self, directory):
        resolver = ApproverResolver(directory)
        assert isinstance(resolver.strategy_for("Expense"), TieredStrategy)
        assert isinstance(resolver.strategy_for("purchase"), RuleStrategy)
        assert not isinstance(resolver.strategy_for(None), TieredStrategy)

    async def test_explicit_rule_wins_over_tiers(self, directory):
        resolver = ApproverResolver(directory)
        node = _node({"type": "user", "id": "ceo"})
        assignee = await resolver.resolve(node, _ctx(category="leave", step=1))
        assert assignee == Assignee(AssigneeType.USER, "ceo")

    async def test_configured_tiers(self, directory):
        resolver = ApproverResolver(directory, tiered_categories={"travel"})
        assert isinstance(resolver.strategy_for("travel"), TieredStrategy)
        assert not isinstance(resolver.strategy_for("leave"), TieredStrategy)

    async def test_register_custom_strategy(self, directory):
        class Always(RuleStrategy):
            def rules_for(self, node, ctx, admin_role):
                return [AssigneeRule(type=AssigneeType.USER, id="ceo")]

        resolver = ApproverResolver(directory)
        resolver.register("purchase", Always())
        assignee = await resolver.resolve(_node(), _ctx(category="purchase"))
        assert assignee.assignee_id == "ceo"


@pytest.mark.unit
class TestEligibility:

    async def test_role_expands_to_active_holders(self, directory):
        directory.add_user("admin2", None, roles=["admin"])
        directory.add_user("admin3", None, roles=["admin"], is_active=False)
        resolver = ApproverResolver(directory)
        users = await resolver.eligible_users(Assignee(AssigneeType.ROLE, "admin"), "u1")
        assert users == ["admin", "admin2"]

    async def test_department_excludes_initiator(self, directory):
        resolver = ApproverResolver(directory)
        users = await resolver.eligible_users(Assignee(AssigneeType.DEPARTMENT, "eng"), "u1")
        assert users == ["m1", "u2"]

    async def test_user_assignee_is_itself(self, directory):
        resolver = ApproverResolver(directory)
        assert await resolver.is_eligible("m1", Assignee(AssigneeType.SUPERVISOR, "m1"), "u1")
        assert not await resolver.is_eligible("u2", Assignee(AssigneeType.SUPERVISOR, "m1"), "u1")

    async def test_is_admin(self, directory):
        resolver = ApproverResolver(directory)
        assert await resolver.is_admin("admin")
        assert not await resolver.is_admin("m1")
        assert not await resolver.is_admin("ghost")
