"""Workflow definition store: versioned approval templates.

Versioning rules:
- A definition is edited in place only while it is a draft that no
  instance references.
- Otherwise a structural edit (node graph, form schema, category) creates a
  new version (draft, ``is_latest``) and clears ``is_latest`` on the row
  it was derived from. Instances keep the version they were created from.
- Activating a version deactivates every other active version of the same
  code, so at most one version per code is active.
"""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import DefinitionStatus, WorkflowCategory
from core.exceptions import ConflictError, NotFoundError, ValidationError
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_instance import WorkflowInstance
from services.base import BaseService
from workflow.form_schema import parse_field_specs
from workflow.graph import DefinitionGraph

logger = logging.getLogger(__name__)

STRUCTURAL_FIELDS = ("node_config", "form_schema", "category")
METADATA_FIELDS = ("name", "description")


class DefinitionService(BaseService[WorkflowDefinition]):
    """Service for workflow definitions and their versions."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowDefinition, db)

    # ─── Read ──────────────────────────────────────────────

    async def get(self, definition_id: str) -> WorkflowDefinition:
        definition = await self.get_by_id(definition_id)
        if not definition:
            raise NotFoundError(f"Workflow definition {definition_id} not found")
        return definition

    async def get_active_by_code(self, code: str) -> WorkflowDefinition:
        """The active version of ``code``.

        Raises:
            NotFoundError: If no version of the code is active
        """
        result = await self.db.execute(
            select(WorkflowDefinition)
            .where(
                WorkflowDefinition.code == code,
                WorkflowDefinition.status == DefinitionStatus.ACTIVE.value,
                WorkflowDefinition.is_deleted == False,
            )
            .order_by(WorkflowDefinition.version.desc())
        )
        definition = result.scalars().first()
        if not definition:
            raise NotFoundError(f"No active workflow definition with code '{code}'")
        return definition

    async def list_definitions(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        category: Optional[str] = None,
        latest_only: bool = True,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[WorkflowDefinition], int]:
        """List definitions; by default one row (the latest version) per code."""
        conditions = [WorkflowDefinition.is_deleted == False]
        if latest_only:
            conditions.append(WorkflowDefinition.is_latest == True)
        if status:
            conditions.append(WorkflowDefinition.status == status)
        if category:
            conditions.append(WorkflowDefinition.category == category)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(WorkflowDefinition.name.ilike(pattern), WorkflowDefinition.code.ilike(pattern))
            )

        result = await self.db.execute(
            select(WorkflowDefinition)
            .where(*conditions)
            .order_by(WorkflowDefinition.code, WorkflowDefinition.version.desc())
            .offset(offset)
            .limit(limit)
        )
        count = await self.db.execute(
            select(func.count()).select_from(WorkflowDefinition).where(*conditions)
        )
        return result.scalars().all(), count.scalar() or 0

    async def list_versions(self, code: str) -> Sequence[WorkflowDefinition]:
        """Every version of ``code``, newest first."""
        result = await self.db.execute(
            select(WorkflowDefinition)
            .where(WorkflowDefinition.code == code, WorkflowDefinition.is_deleted == False)
            .order_by(WorkflowDefinition.version.desc())
        )
        return result.scalars().all()

    async def is_referenced(self, definition_id: str) -> bool:
        result = await self.db.execute(
            select(func.count())
            .select_from(WorkflowInstance)
            .where(WorkflowInstance.definition_id == definition_id)
        )
        return (result.scalar() or 0) > 0

    # ─── Write ─────────────────────────────────────────────

    async def create_definition(
        self,
        name: str,
        code: str,
        node_config: dict[str, Any],
        form_schema: Optional[dict[str, Any]] = None,
        category: str = WorkflowCategory.GENERIC.value,
        description: str = "",
        created_by_id: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Create version 1 of a new definition code.

        Raises:
            ValidationError: If the node graph or form schema is malformed
            ConflictError: If the code is already taken
        """
        self._validate(node_config, form_schema)
        if await self.list_versions(code):
            raise ConflictError(f"Workflow definition code already exists: {code}")

        definition = await self.create({
            "name": name,
            "code": code,
            "category": category,
            "description": description,
            "node_config": node_config,
            "form_schema": form_schema,
            "status": DefinitionStatus.DRAFT.value,
            "version": 1,
            "is_latest": True,
            "created_by_id": created_by_id,
            "updated_by_id": created_by_id,
        })
        logger.info("Workflow definition created: %s v%d", code, definition.version)
        return definition

    async def update_definition(
        self,
        definition_id: str,
        data: dict[str, Any],
        updated_by_id: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Edit a definition, creating a new version when required.

        Returns:
            The edited row, or the new version row

        Raises:
            ConflictError: If ``definition_id`` is not the latest version
            ValidationError: If the new graph or form schema is malformed
        """
        definition = await self.get(definition_id)
        if not definition.is_latest:
            raise ConflictError(
                f"Only the latest version of '{definition.code}' can be edited"
            )

        changes = {
            k: v for k, v in data.items()
            if k in STRUCTURAL_FIELDS + METADATA_FIELDS and v is not None
        }
        structural = any(k in STRUCTURAL_FIELDS for k in changes)
        if structural:
            self._validate(
                changes.get("node_config", definition.node_config),
                changes.get("form_schema", definition.form_schema),
            )

        editable_in_place = (
            definition.status == DefinitionStatus.DRAFT.value
            and not await self.is_referenced(definition.id)
        )
        if not structural or editable_in_place:
            for key, value in changes.items():
                setattr(definition, key, value)
            definition.updated_by_id = updated_by_id
            await self.db.flush()
            await self.db.refresh(definition)
            return definition

        return await self._new_version(definition, changes, updated_by_id)

    async def activate(self, definition_id: str, updated_by_id: Optional[str] = None) -> WorkflowDefinition:
        """Make a version the active one for its code."""
        definition = await self.get(definition_id)
        self._validate(definition.node_config, definition.form_schema)

        await self.db.execute(
            update(WorkflowDefinition)
            .where(
                WorkflowDefinition.code == definition.code,
                WorkflowDefinition.id != definition.id,
                WorkflowDefinition.status == DefinitionStatus.ACTIVE.value,
            )
            .values(status=DefinitionStatus.INACTIVE.value)
        )
        definition.status = DefinitionStatus.ACTIVE.value
        definition.updated_by_id = updated_by_id
        await self.db.flush()
        await self.db.refresh(definition)
        logger.info("Workflow definition activated: %s v%d", definition.code, definition.version)
        return definition

    async def deactivate(self, definition_id: str, updated_by_id: Optional[str] = None) -> WorkflowDefinition:
        """Stop new instances from starting; running instances are unaffected."""
        definition = await self.get(definition_id)
        definition.status = DefinitionStatus.INACTIVE.value
        definition.updated_by_id = updated_by_id
        await self.db.flush()
        await self.db.refresh(definition)
        logger.info("Workflow definition deactivated: %s v%d", definition.code, definition.version)
        return definition

    async def delete_definition(self, definition_id: str) -> None:
        """Delete a draft version no instance references.

        The previous version, if any, becomes the latest again.

        Raises:
            ConflictError: If the version is not a draft or is referenced
        """
        definition = await self.get(definition_id)
        if definition.status != DefinitionStatus.DRAFT.value:
            raise ConflictError("Only draft workflow definitions can be deleted")
        if await self.is_referenced(definition.id):
            raise ConflictError("Workflow definition is referenced by instances")

        code, was_latest = definition.code, definition.is_latest
        await self.hard_delete(definition.id)

        if was_latest:
            remaining = await self.list_versions(code)
            if remaining:
                remaining[0].is_latest = True
                await self.db.flush()
        logger.info("Workflow definition deleted: %s", code)

    # ─── Helpers ───────────────────────────────────────────

    async def _new_version(
        self,
        source: WorkflowDefinition,
        changes: dict[str, Any],
        updated_by_id: Optional[str],
    ) -> WorkflowDefinition:
        result = await self.db.execute(
            select(func.max(WorkflowDefinition.version)).where(WorkflowDefinition.code == source.code)
        )
        next_version = (result.scalar() or 0) + 1

        source.is_latest = False
        await self.db.flush()

        definition = await self.create({
            "name": changes.get("name", source.name),
            "code": source.code,
            "category": changes.get("category", source.category),
            "description": changes.get("description", source.description),
            "node_config": changes.get("node_config", source.node_config),
            "form_schema": changes.get("form_schema", source.form_schema),
            "status": DefinitionStatus.DRAFT.value,
            "version": next_version,
            "is_latest": True,
            "created_by_id": updated_by_id,
            "updated_by_id": updated_by_id,
        })
        logger.info(
            "Workflow definition %s versioned: v%d -> v%d",
            source.code, source.version, next_version,
        )
        return definition

    @staticmethod
    def _validate(node_config: Any, form_schema: Any) -> None:
        errors: list[str] = []
        try:
            DefinitionGraph.parse(node_config)
        except ValidationError as e:
            errors.extend(e.errors or [e.message])
        try:
            parse_field_specs(form_schema)
        except ValidationError as e:
            errors.extend(e.errors or [e.message])
        if errors:
            raise ValidationError("Invalid workflow definition", errors)
