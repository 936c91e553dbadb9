"""
Error taxonomy shared by services and routes.

Usage:
    from cleanops.errors import ErrorCode, NotFoundError

    raise NotFoundError(ErrorCode.CLEANING_NOT_FOUND, "Cleaning not found")
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in API error bodies."""

    # Auth
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"

    # Cleanings
    CLEANING_NOT_FOUND = "CLEANING_NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    NOT_ENOUGH_PHOTOS = "NOT_ENOUGH_PHOTOS"
    INVALID_OPERATOR = "INVALID_OPERATOR"
    WIZARD_PRECONDITION = "WIZARD_PRECONDITION"

    # Orders and requests
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    INVALID_URGENCY = "INVALID_URGENCY"

    # Catalog
    PROPERTY_NOT_FOUND = "PROPERTY_NOT_FOUND"
    SERVICE_TYPE_NOT_FOUND = "SERVICE_TYPE_NOT_FOUND"
    DUPLICATE_SERVICE_TYPE = "DUPLICATE_SERVICE_TYPE"
    HOLIDAY_NOT_FOUND = "HOLIDAY_NOT_FOUND"

    # Ratings, issues, notifications
    RATING_INVALID = "RATING_INVALID"
    ISSUE_NOT_FOUND = "ISSUE_NOT_FOUND"
    NOTIFICATION_NOT_FOUND = "NOTIFICATION_NOT_FOUND"

    # Uploads
    UPLOAD_TOO_LARGE = "UPLOAD_TOO_LARGE"

    # General
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CleanOpsError(Exception):
    """Base exception with error code support."""

    status_code = 500

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        return {
            "error": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CleanOpsError):
    status_code = 400

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, details)


class AuthenticationError(CleanOpsError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(ErrorCode.UNAUTHENTICATED, message)


class PermissionDeniedError(CleanOpsError):
    status_code = 403

    def __init__(self, message: str = "Not allowed") -> None:
        super().__init__(ErrorCode.FORBIDDEN, message)


class NotFoundError(CleanOpsError):
    status_code = 404

    def __init__(
        self, code: ErrorCode = ErrorCode.NOT_FOUND, message: str = "Not found"
    ) -> None:
        super().__init__(code, message)


class ConflictError(CleanOpsError):
    status_code = 409

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_TRANSITION,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, details)


class UploadTooLargeError(CleanOpsError):
    status_code = 413

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.UPLOAD_TOO_LARGE, message, details)
