"""Tests for workflow definition versioning."""

import pytest

from core.constants import DefinitionStatus
from core.exceptions import ConflictError, NotFoundError, ValidationError
from services.definition_service import DefinitionService
from services.workflow_service import WorkflowService


ONE_STEP = {
    "nodes": [
        {"id": "start", "type": "start"},
        {"id": "approve", "type": "approval", "name": "Approval", "assignee": {"type": "supervisor"}},
        {"id": "end", "type": "end"},
    ]
}

TWO_STEP = {
    "nodes": [
        {"id": "start", "type": "start"},
        {"id": "approve", "type": "approval", "name": "Approval", "assignee": {"type": "supervisor"}},
        {"id": "final", "type": "approval", "name": "Final", "assignee": {"type": "role", "id": "admin"}},
        {"id": "end", "type": "end"},
    ]
}


@pytest.mark.integration
class TestDefinitionService:

    async def test_create_starts_as_draft_v1(self, db_session, org):
        svc = DefinitionService(db_session)
        definition = await svc.create_definition(
            name="Purchase", code="purchase", node_config=ONE_STEP, created_by_id=org.admin.id,
        )
        assert definition.version == 1
        assert definition.status == DefinitionStatus.DRAFT.value
        assert definition.is_latest
        assert definition.created_by_id == org.admin.id

    async def test_duplicate_code(self, db_session, org):
        svc = DefinitionService(db_session)
        await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        with pytest.raises(ConflictError):
            await svc.create_definition(name="Other", code="purchase", node_config=ONE_STEP)

    async def test_invalid_graph_and_form(self, db_session, org):
        svc = DefinitionService(db_session)
        with pytest.raises(ValidationError) as exc:
            await svc.create_definition(
                name="Broken",
                code="broken",
                node_config={"nodes": [{"id": "start", "type": "start"}]},
                form_schema={"fields": [{"name": "x", "type": "blob"}]},
            )
        assert len(exc.value.errors) >= 2

    async def test_draft_edited_in_place(self, db_session, org):
        svc = DefinitionService(db_session)
        definition = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)

        edited = await svc.update_definition(definition.id, {"node_config": TWO_STEP})

        assert edited.id == definition.id
        assert edited.version == 1
        assert len(edited.node_config["nodes"]) == 4

    async def test_structural_edit_of_active_creates_version(self, db_session, org):
        svc = DefinitionService(db_session)
        v1 = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await svc.activate(v1.id)

        v2 = await svc.update_definition(v1.id, {"node_config": TWO_STEP}, updated_by_id=org.admin.id)

        assert v2.id != v1.id
        assert v2.version == 2
        assert v2.status == DefinitionStatus.DRAFT.value
        assert v2.is_latest
        await db_session.refresh(v1)
        assert not v1.is_latest
        assert v1.status == DefinitionStatus.ACTIVE.value
        assert [d.version for d in await svc.list_versions("purchase")] == [2, 1]

        with pytest.raises(ConflictError):
            await svc.update_definition(v1.id, {"name": "Stale"})

    async def test_metadata_edit_stays_in_place(self, db_session, org):
        svc = DefinitionService(db_session)
        v1 = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await svc.activate(v1.id)

        edited = await svc.update_definition(v1.id, {"name": "Purchasing"})

        assert edited.id == v1.id
        assert edited.name == "Purchasing"

    async def test_activation_is_exclusive_per_code(self, db_session, org):
        svc = DefinitionService(db_session)
        v1 = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await svc.activate(v1.id)
        v2 = await svc.update_definition(v1.id, {"node_config": TWO_STEP})

        await svc.activate(v2.id)

        await db_session.refresh(v1)
        assert v1.status == DefinitionStatus.INACTIVE.value
        active = await svc.get_active_by_code("purchase")
        assert active.id == v2.id

    async def test_instances_keep_their_version(self, db_session, org):
        defs = DefinitionService(db_session)
        v1 = await defs.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await defs.activate(v1.id)

        workflows = WorkflowService(db_session)
        instance = await workflows.create_instance("purchase", "Monitor", {}, org.u1.id)
        await workflows.submit(instance.id, org.u1.id)

        v2 = await defs.update_definition(v1.id, {"node_config": TWO_STEP})
        await defs.activate(v2.id)

        instance = await workflows.approve(instance.id, org.m1.id)
        assert instance.definition_id == v1.id
        assert instance.status == "approved"

    async def test_deactivated_code_cannot_start(self, db_session, org):
        svc = DefinitionService(db_session)
        definition = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await svc.activate(definition.id)
        await svc.deactivate(definition.id)

        with pytest.raises(NotFoundError):
            await WorkflowService(db_session).create_instance("purchase", "Monitor", {}, org.u1.id)

    async def test_delete_draft_promotes_previous(self, db_session, org):
        svc = DefinitionService(db_session)
        v1 = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await svc.activate(v1.id)
        v2 = await svc.update_definition(v1.id, {"node_config": TWO_STEP})

        await svc.delete_definition(v2.id)

        versions = await svc.list_versions("purchase")
        assert [d.id for d in versions] == [v1.id]
        assert versions[0].is_latest

    async def test_delete_refuses_active_or_referenced(self, db_session, org):
        svc = DefinitionService(db_session)
        v1 = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await svc.activate(v1.id)
        with pytest.raises(ConflictError):
            await svc.delete_definition(v1.id)

    async def test_list_latest_only(self, db_session, org):
        svc = DefinitionService(db_session)
        v1 = await svc.create_definition(name="Purchase", code="purchase", node_config=ONE_STEP)
        await svc.activate(v1.id)
        await svc.update_definition(v1.id, {"node_config": TWO_STEP})
        await svc.create_definition(name="Leave", code="leave", node_config=ONE_STEP, category="leave")

        latest, total = await svc.list_definitions()
        assert total == 2
        everything, total = await svc.list_definitions(latest_only=False)
        assert total == 3
        leave, total = await svc.list_definitions(category="leave")
        assert total == 1 and leave[0].code == "leave"
        found, _ = await svc.list_definitions(search="purch")
        assert {d.code for d in found} == {"purchase"}
