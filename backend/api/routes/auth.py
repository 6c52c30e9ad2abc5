"""Authentication endpoints: login, refresh, me."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.routes.users import _user_to_response
from api.schemas.auth import LoginRequest, RefreshRequest, TokenResponse, UserResponse
from app.dependencies import get_current_active_user, get_db
from core.security import TokenPayload, create_access_token, create_refresh_token, verify_token
from db.models.user import User
from services.auth_service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])


def _token_pair(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id=user.id, email=user.email),
        refresh_token=create_refresh_token(user_id=user.id, email=user.email),
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Exchange email and password for an access/refresh token pair."""
    result = await AuthService(db).login(email=request.email, password=request.password)
    if result is None:
        logger.warning(f"Failed login for {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(f"User logged in: {request.email}")
    return TokenResponse(
        access_token=result["access_token"],
        refresh_token=result["refresh_token"],
        token_type=result["token_type"],
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    request: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """
    Issue a fresh token pair from a refresh token.

    Access tokens are rejected here, and a user deactivated since the
    refresh token was issued can no longer renew it.
    """
    claims = verify_token(request.refresh_token)
    if claims.type != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type: expected refresh token",
        )

    user = await AuthService(db).get_user_by_id(claims.sub)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return _token_pair(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: TokenPayload = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await AuthService(db).get_user_by_id(current_user.sub)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _user_to_response(user)
