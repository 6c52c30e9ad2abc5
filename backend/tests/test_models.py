"""Tests for database models: creation defaults and constraints."""

import pytest
from uuid import uuid4
from sqlalchemy.exc import IntegrityError

from core.constants import InstanceStatus


@pytest.mark.integration
class TestDirectoryModels:

    async def test_department_tree(self, db_session, org):
        from db.models.department import Department

        assert org.eng.parent_id == org.hq.id
        assert org.eng.manager_id == org.m1.id

        team = Department(id=str(uuid4()), name="Platform", code="PLAT", parent_id=org.eng.id)
        db_session.add(team)
        await db_session.flush()
        assert team.created_at is not None

    async def test_user_role_codes(self, db_session, org):
        assert org.admin.role_codes == ["admin"]
        assert sorted(org.designer.role_codes) == ["designer", "employee"]

    async def test_email_unique(self, db_session, org):
        from db.models.user import User

        db_session.add(User(
            id=str(uuid4()),
            email=org.u1.email,
            password_hash="x",
            name="Duplicate",
        ))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_soft_delete(self, db_session, org):
        """SoftDeleteMixin should set is_deleted and deleted_at."""
        assert org.u2.is_deleted is False
        org.u2.soft_delete()
        assert org.u2.is_deleted is True
        assert org.u2.deleted_at is not None


@pytest.mark.integration
class TestWorkflowModels:

    async def test_definition_code_version_unique(self, db_session, leave_definition):
        from db.models.workflow_definition import WorkflowDefinition

        db_session.add(WorkflowDefinition(
            id=str(uuid4()),
            name="Copy",
            code=leave_definition.code,
            version=leave_definition.version,
            node_config=leave_definition.node_config,
        ))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_instance_defaults(self, db_session, org, leave_definition, leave_data):
        from db.models.workflow_instance import WorkflowInstance

        instance = WorkflowInstance(
            id=str(uuid4()),
            definition_id=leave_definition.id,
            title="Leave",
            form_data=leave_data,
            current_node_id="start",
            initiator_id=org.u1.id,
        )
        db_session.add(instance)
        await db_session.flush()

        assert instance.status_enum == InstanceStatus.DRAFT
        assert instance.priority == "medium"
        assert instance.start_time is None

    async def test_node_order_unique_per_instance(self, db_session, org, leave_definition, leave_data):
        from db.models.workflow_instance import WorkflowInstance
        from db.models.workflow_node_instance import WorkflowNodeInstance

        instance = WorkflowInstance(
            id=str(uuid4()),
            definition_id=leave_definition.id,
            title="Leave",
            form_data=leave_data,
            current_node_id="supervisor",
            status=InstanceStatus.PROCESSING.value,
            initiator_id=org.u1.id,
        )
        db_session.add(instance)
        await db_session.flush()

        for _ in range(2):
            db_session.add(WorkflowNodeInstance(
                id=str(uuid4()),
                workflow_instance_id=instance.id,
                definition_id=leave_definition.id,
                node_id="supervisor",
                node_name="Supervisor approval",
                node_type="approval",
                order=1,
            ))
        with pytest.raises(IntegrityError):
            await db_session.flush()
