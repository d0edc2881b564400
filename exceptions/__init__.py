"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,

    # File
    MalformedFileError,
    FileTooLargeError,

    # Import sessions
    UnknownEntityTypeError,
    SessionNotFoundError,
    SessionAlreadyExecutedError,
    InvalidSessionStateError,
    InvalidMappingError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",

    # File
    "MalformedFileError",
    "FileTooLargeError",

    # Import sessions
    "UnknownEntityTypeError",
    "SessionNotFoundError",
    "SessionAlreadyExecutedError",
    "InvalidSessionStateError",
    "InvalidMappingError",
]
