"""Health probes.

``/health/`` answers without touching anything; ``/health/health`` also
runs ``SELECT 1`` against the workflow database.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from db import database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/", response_model=dict[str, Any])
async def liveness() -> dict[str, Any]:
    settings = get_settings()
    return {"app": settings.APP_NAME, "version": settings.APP_VERSION, "status": "ok"}


@router.get("/health", response_model=dict[str, Any])
async def readiness() -> dict[str, Any]:
    """503 when the database cannot be reached."""
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Database health check failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "database": "unavailable"},
        )
    return {"status": "healthy", "database": "ok"}
