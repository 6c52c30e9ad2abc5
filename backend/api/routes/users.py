"""User management endpoints: list, get, create, update."""

from typing import Optional

from fastapi import APIRouter, HTTPException, status, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.rbac import require_permission
from core.security import TokenPayload
from api.schemas.auth import UserResponse
from api.schemas.common import PaginationParams
from api.schemas.directory import UserCreateRequest, UserListResponse, UserUpdateRequest
from app.dependencies import get_db, get_current_active_user
from services.user_service import UserService
from core.utils import calculate_offset

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


def _user_to_response(user) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        department_id=user.department_id,
        position=user.position,
        is_active=user.is_active,
        roles=user.role_codes,
        created_at=user.created_at,
    )


@router.get("/", response_model=UserListResponse)
async def list_users(
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(default=None, description="Match name or email"),
    department_id: Optional[str] = Query(default=None),
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    """List directory users (paginated)."""
    svc = UserService(db)
    offset = calculate_offset(pagination.page, pagination.per_page)

    users, total = await svc.list_users(
        search=search,
        department_id=department_id,
        offset=offset,
        limit=pagination.per_page,
    )

    return UserListResponse(
        users=[_user_to_response(u) for u in users],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: UserCreateRequest,
    current_user: TokenPayload = Depends(require_permission("directory.manage")),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Create a directory user."""
    svc = UserService(db)
    user = await svc.create_user(
        email=request.email,
        password=request.password,
        name=request.name,
        department_id=request.department_id,
        position=request.position,
        role_codes=request.role_codes,
    )
    logger.info(f"User {user.email} created by {current_user.email}")
    return _user_to_response(user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Get user details by ID."""
    svc = UserService(db)
    user = await svc.get_by_id(user_id)

    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return _user_to_response(user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    request: UserUpdateRequest,
    current_user: TokenPayload = Depends(require_permission("directory.manage")),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Update a user's profile, department, status or roles."""
    svc = UserService(db)
    user = await svc.update_user(user_id, request.model_dump(exclude_unset=True))
    return _user_to_response(user)
