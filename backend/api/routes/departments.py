"""Department endpoints: the organization tree."""

from fastapi import APIRouter, HTTPException, status, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.rbac import require_permission
from core.security import TokenPayload
from api.schemas.common import PaginationParams
from api.schemas.directory import (
    DepartmentCreateRequest,
    DepartmentListResponse,
    DepartmentResponse,
    DepartmentUpdateRequest,
)
from app.dependencies import get_db, get_current_active_user
from services.department_service import DepartmentService
from core.utils import calculate_offset

logger = logging.getLogger(__name__)

router = APIRouter(tags=["departments"])


@router.get("/", response_model=DepartmentListResponse)
async def list_departments(
    pagination: PaginationParams = Depends(),
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> DepartmentListResponse:
    """List departments (paginated)."""
    svc = DepartmentService(db)
    departments, total = await svc.list_departments(
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )
    return DepartmentListResponse(
        departments=[DepartmentResponse.model_validate(d) for d in departments],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    request: DepartmentCreateRequest,
    current_user: TokenPayload = Depends(require_permission("directory.manage")),
    db: AsyncSession = Depends(get_db),
) -> DepartmentResponse:
    """Create a department."""
    svc = DepartmentService(db)
    department = await svc.create_department(**request.model_dump())
    logger.info(f"Department {department.code} created by {current_user.email}")
    return DepartmentResponse.model_validate(department)


@router.get("/{department_id}", response_model=DepartmentResponse)
async def get_department(
    department_id: str,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> DepartmentResponse:
    """Get a department by ID."""
    svc = DepartmentService(db)
    department = await svc.get_by_id(department_id)
    if not department:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Department not found")
    return DepartmentResponse.model_validate(department)


@router.put("/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: str,
    request: DepartmentUpdateRequest,
    current_user: TokenPayload = Depends(require_permission("directory.manage")),
    db: AsyncSession = Depends(get_db),
) -> DepartmentResponse:
    """Update a department (manager, parent, status, ...)."""
    svc = DepartmentService(db)
    department = await svc.update_department(department_id, request.model_dump(exclude_unset=True))
    return DepartmentResponse.model_validate(department)
