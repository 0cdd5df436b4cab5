"""Error classification system for Taskboard.

Every failure that reaches a caller is one of the ``TaskboardError`` kinds
below. Each kind carries the HTTP status the web layer answers with.
"""

import sqlite3
from typing import Optional

import structlog

log = structlog.get_logger()


class TaskboardError(Exception):
    """Base class for errors surfaced to callers."""

    status_code: int = 500
    kind: str = "error"

    def __init__(self, message: str, *, original: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.original_exception = original

    def to_dict(self) -> dict:
        """Convert to the response envelope."""
        return {"success": False, "message": self.message}


class ValidationError(TaskboardError):
    """Malformed, missing or out-of-range input."""

    status_code = 400
    kind = "validation"


class AuthenticationError(TaskboardError):
    """Missing, unknown or expired credentials."""

    status_code = 401
    kind = "authentication"


class PermissionDeniedError(TaskboardError):
    """Authenticated, but not allowed to do this."""

    status_code = 403
    kind = "permission"


class NotFoundError(TaskboardError):
    """Referenced entity does not exist."""

    status_code = 404
    kind = "not_found"


class ConflictError(TaskboardError):
    """Request conflicts with current state (duplicate join, leader leave)."""

    status_code = 409
    kind = "conflict"


class UnexpectedError(TaskboardError):
    """Store or infrastructure failure."""

    status_code = 500
    kind = "unexpected"


def classify_error(error: BaseException, context: str = "") -> TaskboardError:
    """Classify an exception into a Taskboard error kind.

    Args:
        error: The exception to classify
        context: Optional context about where the error occurred

    Returns:
        The error itself if already classified, otherwise a wrapping error
    """
    if isinstance(error, TaskboardError):
        return error

    if isinstance(error, sqlite3.IntegrityError):
        msg = str(error)
        if "UNIQUE constraint failed" in msg:
            return ConflictError("Resource already exists", original=error)
        if "FOREIGN KEY constraint failed" in msg:
            return ValidationError("Referenced resource does not exist", original=error)
        return ConflictError(msg, original=error)

    log.error(
        "unexpected_error",
        context=context,
        error_type=type(error).__name__,
        error=str(error),
    )
    return UnexpectedError(str(error) or type(error).__name__, original=error)
