"""Workflow definition endpoints: list, create, get, update, delete, activate, deactivate, versions."""

from typing import Optional

from fastapi import APIRouter, status, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.rbac import require_permission
from core.security import TokenPayload
from api.schemas.common import PaginationParams, MessageResponse
from api.schemas.workflow import (
    DefinitionCreate,
    DefinitionUpdate,
    DefinitionResponse,
    DefinitionListResponse,
)
from app.dependencies import get_db, get_current_active_user
from services.definition_service import DefinitionService
from core.utils import calculate_offset

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflow-definitions"])


def _definition_to_response(definition) -> DefinitionResponse:
    return DefinitionResponse(
        id=definition.id,
        name=definition.name,
        code=definition.code,
        category=definition.category,
        description=definition.description or "",
        node_config=definition.node_config or {},
        form_schema=definition.form_schema,
        status=definition.status,
        version=definition.version,
        is_latest=definition.is_latest,
        created_by_id=definition.created_by_id,
        updated_by_id=definition.updated_by_id,
        created_at=definition.created_at,
        updated_at=definition.updated_at,
    )


@router.get("/", response_model=DefinitionListResponse)
async def list_definitions(
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(default=None, description="Match name or code"),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    category: Optional[str] = Query(default=None),
    all_versions: bool = Query(default=False, description="Include superseded versions"),
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> DefinitionListResponse:
    """
    List workflow definitions (latest version per code unless all_versions).
    """
    svc = DefinitionService(db)
    definitions, total = await svc.list_definitions(
        search=search,
        status=status_filter,
        category=category,
        latest_only=not all_versions,
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )

    return DefinitionListResponse(
        definitions=[_definition_to_response(d) for d in definitions],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=DefinitionResponse, status_code=status.HTTP_201_CREATED)
async def create_definition(
    request: DefinitionCreate,
    current_user: TokenPayload = Depends(require_permission("workflows.manage")),
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """
    Create version 1 of a workflow definition (as draft).
    """
    svc = DefinitionService(db)
    definition = await svc.create_definition(
        name=request.name,
        code=request.code,
        node_config=request.node_config,
        form_schema=request.form_schema,
        category=request.category,
        description=request.description,
        created_by_id=current_user.sub,
    )
    logger.info(f"Workflow definition {definition.code} created by {current_user.email}")
    return _definition_to_response(definition)


@router.get("/code/{code}/versions", response_model=list[DefinitionResponse])
async def list_definition_versions(
    code: str,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> list[DefinitionResponse]:
    """
    Every version of a definition code, newest first.
    """
    svc = DefinitionService(db)
    return [_definition_to_response(d) for d in await svc.list_versions(code)]


@router.get("/{definition_id}", response_model=DefinitionResponse)
async def get_definition(
    definition_id: str,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """
    Get a definition version by ID.
    """
    svc = DefinitionService(db)
    return _definition_to_response(await svc.get(definition_id))


@router.put("/{definition_id}", response_model=DefinitionResponse)
async def update_definition(
    definition_id: str,
    request: DefinitionUpdate,
    current_user: TokenPayload = Depends(require_permission("workflows.manage")),
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """
    Update a definition.

    Editing the graph, form or category of a version that is active or
    already used by instances creates a new draft version; the response is
    that new version.
    """
    svc = DefinitionService(db)
    definition = await svc.update_definition(
        definition_id,
        request.model_dump(exclude_unset=True),
        updated_by_id=current_user.sub,
    )
    return _definition_to_response(definition)


@router.delete("/{definition_id}", response_model=MessageResponse)
async def delete_definition(
    definition_id: str,
    current_user: TokenPayload = Depends(require_permission("workflows.manage")),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """
    Delete an unused draft version.
    """
    svc = DefinitionService(db)
    await svc.delete_definition(definition_id)
    logger.info(f"Workflow definition {definition_id} deleted by {current_user.email}")
    return MessageResponse(message="Workflow definition deleted")


@router.post("/{definition_id}/activate", response_model=DefinitionResponse)
async def activate_definition(
    definition_id: str,
    current_user: TokenPayload = Depends(require_permission("workflows.manage")),
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """
    Make this version the one new instances start from.
    """
    svc = DefinitionService(db)
    definition = await svc.activate(definition_id, updated_by_id=current_user.sub)
    return _definition_to_response(definition)


@router.post("/{definition_id}/deactivate", response_model=DefinitionResponse)
async def deactivate_definition(
    definition_id: str,
    current_user: TokenPayload = Depends(require_permission("workflows.manage")),
    db: AsyncSession = Depends(get_db),
) -> DefinitionResponse:
    """
    Stop new instances from starting on this version.
    """
    svc = DefinitionService(db)
    definition = await svc.deactivate(definition_id, updated_by_id=current_user.sub)
    return _definition_to_response(definition)
