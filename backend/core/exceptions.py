"""Custom exceptions for the OA workflow service."""

from typing import Optional


class OAException(Exception):
    """Base exception for the OA workflow service."""

    error_code = "internal_error"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(OAException):
    """Resource not found exception."""

    error_code = "not_found"

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class UnauthorizedError(OAException):
    """Unauthorized access exception."""

    error_code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize UnauthorizedError with 401 status code."""
        super().__init__(message, 401)


class ForbiddenError(OAException):
    """Forbidden access exception."""

    error_code = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        """Initialize ForbiddenError with 403 status code."""
        super().__init__(message, 403)


class ValidationError(OAException):
    """Validation error exception.

    ``errors`` holds one human-readable entry per offending field.
    """

    error_code = "validation_error"

    def __init__(self, message: str = "Validation failed", errors: Optional[list[str]] = None):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)
        self.errors = errors or []


class ConflictError(OAException):
    """Resource conflict exception."""

    error_code = "conflict"

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class InvalidTransitionError(OAException):
    """The instance or node instance is not in a state that permits the action."""

    error_code = "invalid_transition"

    def __init__(self, message: str = "Invalid workflow transition"):
        super().__init__(message, 409)


class AlreadyDecidedError(InvalidTransitionError):
    """A concurrent actor decided the node instance first."""

    error_code = "already_decided"

    def __init__(self, message: str = "Node instance status no longer pending"):
        super().__init__(message)


class NoEligibleApproverError(OAException):
    """No user can be found to act on the next step."""

    error_code = "no_eligible_approver"

    def __init__(self, message: str = "No eligible approver"):
        super().__init__(message, 422)
