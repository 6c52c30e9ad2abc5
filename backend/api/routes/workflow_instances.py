"""Workflow instance endpoints: start, edit, submit, approve, reject, cancel, terminate, resubmit, inboxes, department listing."""

from typing import Optional, Sequence

from fastapi import APIRouter, status, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.security import TokenPayload
from api.schemas.common import PaginationParams
from api.schemas.workflow import (
    ActionRequest,
    CancelRequest,
    InstanceCreate,
    InstanceDetailResponse,
    InstanceListResponse,
    InstanceResponse,
    InstanceUpdate,
    NodeInstanceResponse,
    PendingItemResponse,
    PendingListResponse,
    ResubmitRequest,
)
from app.dependencies import get_db, get_current_active_user
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_instance import WorkflowInstance
from services.workflow_service import WorkflowService
from core.utils import calculate_offset

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflow-instances"])


def _instance_fields(instance: WorkflowInstance, definition: Optional[WorkflowDefinition]) -> dict:
    return {
        "id": instance.id,
        "definition_id": instance.definition_id,
        "definition_code": definition.code if definition else None,
        "definition_version": definition.version if definition else None,
        "business_key": instance.business_key,
        "title": instance.title,
        "form_data": instance.form_data or {},
        "current_node_id": instance.current_node_id,
        "status": instance.status,
        "initiator_id": instance.initiator_id,
        "start_time": instance.start_time,
        "end_time": instance.end_time,
        "priority": instance.priority,
        "due_date": instance.due_date,
        "resubmitted_from_id": instance.resubmitted_from_id,
        "cancel_reason": instance.cancel_reason,
        "submit_comment": instance.submit_comment,
        "created_at": instance.created_at,
        "updated_at": instance.updated_at,
    }


def _instance_to_response(instance, definition=None) -> InstanceResponse:
    return InstanceResponse(**_instance_fields(instance, definition))


async def _instance_page(
    svc: WorkflowService,
    instances: Sequence[WorkflowInstance],
    total: int,
    pagination: PaginationParams,
) -> InstanceListResponse:
    definitions = {}
    for instance in instances:
        if instance.definition_id not in definitions:
            definitions[instance.definition_id] = await svc.definitions.get(instance.definition_id)
    return InstanceListResponse(
        instances=[_instance_to_response(i, definitions[i.definition_id]) for i in instances],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


async def _respond(svc: WorkflowService, instance: WorkflowInstance) -> InstanceResponse:
    definition = await svc.definitions.get(instance.definition_id)
    return _instance_to_response(instance, definition)


# ─── Start / edit ──────────────────────────────────────────────

@router.post("/", response_model=InstanceResponse, status_code=status.HTTP_201_CREATED)
async def create_instance(
    request: InstanceCreate,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    """
    Start a workflow from the active version of a definition.

    The instance is created as a draft; pass ``submit: true`` to submit it
    in the same request.
    """
    svc = WorkflowService(db)
    instance = await svc.create_instance(
        definition_code=request.definition_code,
        title=request.title,
        form_data=request.form_data,
        initiator_id=current_user.sub,
        business_key=request.business_key,
        priority=request.priority,
        due_date=request.due_date,
    )
    if request.submit:
        instance = await svc.submit(instance.id, current_user.sub)
    return await _respond(svc, instance)


@router.put("/{instance_id}", response_model=InstanceResponse)
async def update_instance(
    instance_id: str,
    request: InstanceUpdate,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    """
    Edit a draft before it is submitted.
    """
    svc = WorkflowService(db)
    instance = await svc.update_draft(
        instance_id,
        current_user.sub,
        **request.model_dump(exclude_unset=True),
    )
    return await _respond(svc, instance)


# ─── Inboxes ───────────────────────────────────────────────────

@router.get("/mine", response_model=InstanceListResponse)
async def list_my_instances(
    pagination: PaginationParams = Depends(),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceListResponse:
    """
    Workflows the current user started.
    """
    svc = WorkflowService(db)
    instances, total = await svc.list_initiated_by(
        current_user.sub,
        status=status_filter,
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )
    return await _instance_page(svc, instances, total, pagination)


@router.get("/pending", response_model=PendingListResponse)
async def list_pending(
    pagination: PaginationParams = Depends(),
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> PendingListResponse:
    """
    Steps waiting on the current user, oldest first.
    """
    svc = WorkflowService(db)
    items, total = await svc.list_pending_for(
        current_user.sub,
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )
    return PendingListResponse(
        items=[PendingItemResponse.model_validate(item) for item in items],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.get("/processed", response_model=InstanceListResponse)
async def list_processed(
    pagination: PaginationParams = Depends(),
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceListResponse:
    """
    Workflows in which the current user approved or rejected a step.
    """
    svc = WorkflowService(db)
    instances, total = await svc.list_decided_by(
        current_user.sub,
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )
    return await _instance_page(svc, instances, total, pagination)


@router.get("/department/{department_id}", response_model=InstanceListResponse)
async def list_department_instances(
    department_id: str,
    pagination: PaginationParams = Depends(),
    category: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceListResponse:
    """
    Workflows started by members of a department (its manager or an admin).
    """
    svc = WorkflowService(db)
    instances, total = await svc.list_for_department(
        current_user.sub,
        department_id,
        category=category,
        status=status_filter,
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )
    return await _instance_page(svc, instances, total, pagination)


@router.get("/{instance_id}", response_model=InstanceDetailResponse)
async def get_instance(
    instance_id: str,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceDetailResponse:
    """
    Instance with its approval history and the users who may act next.
    """
    svc = WorkflowService(db)
    detail = await svc.get_instance(instance_id, viewer_id=current_user.sub)
    return InstanceDetailResponse(
        **_instance_fields(detail.instance, detail.definition),
        history=[NodeInstanceResponse.model_validate(row) for row in detail.history],
        eligible_assignees=detail.eligible_assignees,
    )


# ─── Transitions ───────────────────────────────────────────────

@router.post("/{instance_id}/submit", response_model=InstanceResponse)
async def submit_instance(
    instance_id: str,
    request: Optional[ActionRequest] = None,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    svc = WorkflowService(db)
    comment = request.comment if request else None
    return await _respond(svc, await svc.submit(instance_id, current_user.sub, comment))


@router.post("/{instance_id}/approve", response_model=InstanceResponse)
async def approve_instance(
    instance_id: str,
    request: Optional[ActionRequest] = None,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    """
    Approve the current step on behalf of the current user.
    """
    svc = WorkflowService(db)
    comment = request.comment if request else None
    return await _respond(svc, await svc.approve(instance_id, current_user.sub, comment))


@router.post("/{instance_id}/reject", response_model=InstanceResponse)
async def reject_instance(
    instance_id: str,
    request: Optional[ActionRequest] = None,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    """
    Reject the current step; the whole workflow ends as rejected.
    """
    svc = WorkflowService(db)
    comment = request.comment if request else None
    return await _respond(svc, await svc.reject(instance_id, current_user.sub, comment))


@router.post("/{instance_id}/cancel", response_model=InstanceResponse)
async def cancel_instance(
    instance_id: str,
    request: Optional[CancelRequest] = None,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    """
    Withdraw a draft or in-flight workflow (initiator or administrator).
    """
    svc = WorkflowService(db)
    reason = request.reason if request else None
    return await _respond(svc, await svc.cancel(instance_id, current_user.sub, reason))


@router.post("/{instance_id}/terminate", response_model=InstanceResponse)
async def terminate_instance(
    instance_id: str,
    request: Optional[CancelRequest] = None,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    """
    Force-stop an in-flight workflow (administrator only).
    """
    svc = WorkflowService(db)
    reason = request.reason if request else None
    return await _respond(svc, await svc.terminate(instance_id, current_user.sub, reason))


@router.post("/{instance_id}/resubmit", response_model=InstanceResponse, status_code=status.HTTP_201_CREATED)
async def resubmit_instance(
    instance_id: str,
    request: Optional[ResubmitRequest] = None,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> InstanceResponse:
    """
    Start a new draft from a rejected workflow.
    """
    svc = WorkflowService(db)
    instance = await svc.resubmit(
        instance_id,
        current_user.sub,
        form_data=request.form_data if request else None,
        title=request.title if request else None,
    )
    return await _respond(svc, instance)
