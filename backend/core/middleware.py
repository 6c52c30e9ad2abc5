"""FastAPI middleware for request tracking, timing, and error handling.

Adds:
- X-Request-ID header (generated if not provided)
- X-Process-Time header (request duration)
- Structured logging per request, with the request id bound into structlog
  context vars
- Global exception handler mapping OAException subclasses to HTTP responses
"""

import logging
import time
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.schemas.common import ErrorResponse
from app.config import get_settings
from core.exceptions import NoEligibleApproverError, OAException, ValidationError

logger = logging.getLogger(__name__)


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Add request ID and timing to every request/response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        # Engine log lines emitted during this request carry the id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "Unhandled exception on %s %s", request.method, request.url.path,
                extra={"request_id": request_id},
            )
            detail = "Internal server error"
            if not get_settings().is_production and str(exc):
                detail = str(exc)
            payload = ErrorResponse(detail=detail, error_code="internal_error", request_id=request_id)
            return JSONResponse(
                status_code=500,
                content=payload.model_dump(exclude_none=True),
                headers={"X-Request-ID": request_id},
            )

        duration_ms = (time.monotonic() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

        if "/health" not in request.url.path:
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s -> %s (%.0fms)",
                request.method, request.url.path, response.status_code, duration_ms,
                extra={"request_id": request_id, "status_code": response.status_code},
            )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(OAException)
    async def oa_exception_handler(request: Request, exc: OAException):
        request_id = getattr(request.state, "request_id", None)
        payload = ErrorResponse(
            detail=exc.message,
            error_code=exc.error_code,
            request_id=request_id,
            errors=exc.errors if isinstance(exc, ValidationError) and exc.errors else None,
        )
        content = payload.model_dump(exclude_none=True)
        if isinstance(exc, NoEligibleApproverError):
            # Blocks the instance until an administrator fixes the directory
            logger.error(
                "Approver resolution failed: %s",
                exc.message,
                extra={"request_id": request_id, "path": request.url.path},
            )
        return JSONResponse(status_code=exc.status_code, content=content)
