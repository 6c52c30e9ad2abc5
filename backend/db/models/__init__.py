"""Database models for the OA workflow service.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.department import Department
from db.models.user import User
from db.models.role import Role, user_roles
from db.models.permission import Permission, role_permissions
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_node_instance import WorkflowNodeInstance

__all__ = [
    "Department",
    "User",
    "Role",
    "user_roles",
    "Permission",
    "role_permissions",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowNodeInstance",
]
