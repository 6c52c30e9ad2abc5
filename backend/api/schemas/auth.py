"""Authentication schemas."""

from pydantic import BaseModel, Field, EmailStr
from datetime import datetime
from typing import List, Optional


class LoginRequest(BaseModel):
    """User login request."""

    email: EmailStr = Field(description="User email address")
    password: str = Field(min_length=1, description="User password")


class TokenResponse(BaseModel):
    """Token response with access and refresh tokens."""

    access_token: str = Field(description="JWT access token")
    refresh_token: str = Field(description="JWT refresh token")
    token_type: str = Field(default="bearer", description="Token type")


class RefreshRequest(BaseModel):
    """Token refresh request."""

    refresh_token: str = Field(description="Refresh token to exchange for new access token")


class UserResponse(BaseModel):
    """User information response."""

    id: str = Field(description="User ID")
    email: str = Field(description="User email address")
    name: str = Field(description="Display name")
    department_id: Optional[str] = Field(default=None, description="Department ID")
    position: Optional[str] = Field(default=None, description="Job title")
    is_active: bool = Field(description="Whether user account is active")
    roles: List[str] = Field(default=[], description="Role codes")
    created_at: datetime = Field(description="User creation timestamp")

    class Config:
        from_attributes = True
