"""Directory schemas: users and departments."""

from pydantic import BaseModel, Field, EmailStr
from datetime import datetime
from typing import List, Optional

from api.schemas.auth import UserResponse


class UserCreateRequest(BaseModel):
    """Request to create a directory user."""

    email: EmailStr = Field(description="User email address")
    password: str = Field(min_length=8, description="Initial password (min 8 characters)")
    name: str = Field(min_length=1, description="Display name")
    department_id: Optional[str] = Field(default=None, description="Department ID")
    position: Optional[str] = Field(default=None, description="Job title")
    role_codes: List[str] = Field(default=[], description="Role codes to assign")


class UserUpdateRequest(BaseModel):
    """Request to update a directory user; omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, min_length=1)
    department_id: Optional[str] = None
    position: Optional[str] = None
    is_active: Optional[bool] = None
    role_codes: Optional[List[str]] = Field(default=None, description="Replaces the role set")


class UserListResponse(BaseModel):
    """Paginated list of users."""

    users: List[UserResponse]
    total: int
    page: int
    per_page: int


class DepartmentCreateRequest(BaseModel):
    """Request to create a department."""

    name: str = Field(min_length=1, description="Department name")
    code: str = Field(min_length=1, description="Department code (unique)")
    description: str = Field(default="", description="Free text")
    parent_id: Optional[str] = Field(default=None, description="Parent department ID")
    manager_id: Optional[str] = Field(default=None, description="Manager user ID")


class DepartmentUpdateRequest(BaseModel):
    """Request to update a department; omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    manager_id: Optional[str] = None
    status: Optional[str] = Field(default=None, pattern="^(active|inactive)$")


class DepartmentResponse(BaseModel):
    """Department information response."""

    id: str
    name: str
    code: str
    description: str
    parent_id: Optional[str]
    manager_id: Optional[str]
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class DepartmentListResponse(BaseModel):
    """Paginated list of departments."""

    departments: List[DepartmentResponse]
    total: int
    page: int
    per_page: int
