"""
Custom exception classes for the application.

Structural import failures (bad file, unknown session, bad mapping) are
raised as AppError subclasses and surface to the caller as JSON errors.
Row-level problems never use these; they become row outcomes instead.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_SESSION_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# FILE ERRORS
# ===================

class MalformedFileError(AppError):
    """Uploaded file could not be read as a table (400)."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="MALFORMED_FILE",
            message=message,
            status_code=400,
            details=details
        )


class FileTooLargeError(AppError):
    """Uploaded file exceeds the configured size limit (413)."""

    def __init__(self, size_bytes: int, max_bytes: int):
        super().__init__(
            code="FILE_TOO_LARGE",
            message=f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit",
            status_code=413,
            details={"size_bytes": size_bytes, "max_bytes": max_bytes}
        )


# ===================
# IMPORT SESSION ERRORS
# ===================

class UnknownEntityTypeError(NotFoundError):
    """No import profile registered for the entity type."""

    def __init__(self, entity_type: str):
        super().__init__(
            resource="Import entity type",
            identifier=entity_type,
            code="IMPORT_ENTITY_TYPE_NOT_FOUND"
        )


class SessionNotFoundError(NotFoundError):
    """Import session unknown, expired or already terminal."""

    def __init__(self, session_id: str):
        super().__init__(
            resource="Import session",
            identifier=session_id,
            code="IMPORT_SESSION_NOT_FOUND"
        )


class SessionAlreadyExecutedError(ConflictError):
    """Import session was executed before; sessions are single-use."""

    def __init__(self, session_id: str):
        super().__init__(
            code="IMPORT_SESSION_ALREADY_EXECUTED",
            message="Import session has already been executed",
            details={"id": session_id}
        )


class InvalidSessionStateError(ConflictError):
    """Operation not allowed in the session's current state."""

    def __init__(self, session_id: str, current_status: str, expected_status: str):
        super().__init__(
            code="IMPORT_SESSION_INVALID_STATE",
            message=f"Import session is {current_status}, expected {expected_status}",
            details={
                "id": session_id,
                "current_status": current_status,
                "expected_status": expected_status,
            }
        )


class InvalidMappingError(ValidationError):
    """Column mapping is incomplete or refers to unknown columns/fields."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="IMPORT_INVALID_MAPPING",
            message=message,
            details=details
        )
