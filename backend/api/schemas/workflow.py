"""Workflow schemas: definitions, instances and node instances."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Any


# ─── Definitions ───────────────────────────────────────────────

class DefinitionCreate(BaseModel):
    """Request to create a workflow definition (version 1 of a code)."""

    name: str = Field(min_length=1, description="Display name")
    code: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$", description="Stable process code")
    category: str = Field(default="generic", min_length=1, description="leave, overtime, expense, generic, ...")
    description: str = Field(default="", description="Free text")
    node_config: Dict[str, Any] = Field(description="Node graph, {'nodes': [...]}")
    form_schema: Optional[Dict[str, Any]] = Field(default=None, description="Form fields, {'fields': [...]}")


class DefinitionUpdate(BaseModel):
    """Request to edit a definition; structural edits may create a new version."""

    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    node_config: Optional[Dict[str, Any]] = None
    form_schema: Optional[Dict[str, Any]] = None


class DefinitionResponse(BaseModel):
    """Workflow definition version."""

    id: str
    name: str
    code: str
    category: str
    description: str
    node_config: Dict[str, Any]
    form_schema: Optional[Dict[str, Any]]
    status: str = Field(description="draft, active or inactive")
    version: int
    is_latest: bool
    created_by_id: Optional[str]
    updated_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DefinitionListResponse(BaseModel):
    """Paginated list of definitions."""

    definitions: List[DefinitionResponse]
    total: int
    page: int
    per_page: int


# ─── Instances ─────────────────────────────────────────────────

class InstanceCreate(BaseModel):
    """Request to start a workflow instance (created as draft)."""

    definition_code: str = Field(min_length=1, description="Code of an active definition")
    title: str = Field(min_length=1, description="Human-readable title")
    form_data: Dict[str, Any] = Field(default={}, description="Form values")
    business_key: Optional[str] = Field(default=None, description="Correlation id into business data")
    priority: str = Field(default="medium", description="low, medium, high or urgent")
    due_date: Optional[datetime] = None
    submit: bool = Field(default=False, description="Submit right after creating")


class InstanceUpdate(BaseModel):
    """Request to edit a draft instance."""

    title: Optional[str] = Field(default=None, min_length=1)
    form_data: Optional[Dict[str, Any]] = None
    business_key: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[datetime] = None


class ActionRequest(BaseModel):
    """Body of submit / approve / reject."""

    comment: Optional[str] = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    """Body of cancel / terminate."""

    reason: Optional[str] = Field(default=None, max_length=2000)


class ResubmitRequest(BaseModel):
    """Body of resubmit; omitted fields are copied from the rejected instance."""

    title: Optional[str] = Field(default=None, min_length=1)
    form_data: Optional[Dict[str, Any]] = None


class NodeInstanceResponse(BaseModel):
    """One ledger entry."""

    id: str
    node_id: str
    node_name: str
    node_type: str
    assignee_type: Optional[str]
    assignee_id: Optional[str]
    status: str
    comment: Optional[str]
    actor_id: Optional[str]
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    duration: Optional[int] = Field(description="Seconds between start and decision")
    order: int

    class Config:
        from_attributes = True


class InstanceResponse(BaseModel):
    """Workflow instance."""

    id: str
    definition_id: str
    definition_code: Optional[str] = None
    definition_version: Optional[int] = None
    business_key: Optional[str]
    title: str
    form_data: Dict[str, Any]
    current_node_id: Optional[str]
    status: str
    initiator_id: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    priority: str
    due_date: Optional[datetime]
    resubmitted_from_id: Optional[str]
    cancel_reason: Optional[str]
    submit_comment: Optional[str]
    created_at: datetime
    updated_at: datetime


class InstanceDetailResponse(InstanceResponse):
    """Instance with its ledger and the users who may act next."""

    history: List[NodeInstanceResponse] = []
    eligible_assignees: List[str] = []


class InstanceListResponse(BaseModel):
    """Paginated list of instances."""

    instances: List[InstanceResponse]
    total: int
    page: int
    per_page: int


class PendingItemResponse(BaseModel):
    """An open step waiting on the current user."""

    instance_id: str
    node_instance_id: str
    title: str
    due_date: Optional[datetime]
    definition_code: str
    definition_name: str
    category: str
    node_id: str
    node_name: str
    initiator_id: str
    priority: str
    assignee_type: str
    assignee_id: str
    start_time: Optional[datetime]

    class Config:
        from_attributes = True


class PendingListResponse(BaseModel):
    """Paginated list of pending steps."""

    items: List[PendingItemResponse]
    total: int
    page: int
    per_page: int
