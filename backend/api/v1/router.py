"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import (
    health,
    auth,
    users,
    departments,
    workflow_definitions,
    workflow_instances,
)

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Authentication
api_v1_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"],
)

# Directory
api_v1_router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"],
)

api_v1_router.include_router(
    departments.router,
    prefix="/departments",
    tags=["Departments"],
)

# Workflow definitions (versioned templates)
api_v1_router.include_router(
    workflow_definitions.router,
    prefix="/workflow-definitions",
    tags=["Workflow Definitions"],
)

# Workflow instances (approval runs)
api_v1_router.include_router(
    workflow_instances.router,
    prefix="/workflow-instances",
    tags=["Workflow Instances"],
)
