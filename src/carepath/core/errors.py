"""Service errors and their HTTP mapping.

Each CarepathError subclass fixes a machine-readable ErrorCode and the
status code the API answers with. The body shape is shared:

    {"error": {"code": "ALREADY_RESOLVED", "message": "...", "details": {...}}}
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    NOTE_CONFLICT = "NOTE_CONFLICT"
    CLASSIFIER_UNAVAILABLE = "CLASSIFIER_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    STORE_ERROR = "STORE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CarepathError(Exception):
    """Base class for errors the API reports to clients.

    Attributes:
        message: Safe to show to staff; never contains student text
        details: Extra identifiers such as record_id or status
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(CarepathError):
    """Request data failed a domain check (missing target, empty staff id)."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 422


class RecordNotFoundError(CarepathError):
    """A flag, pending record, chat room or note does not exist."""

    code = ErrorCode.RECORD_NOT_FOUND
    status_code = 404


class DuplicateResolutionError(CarepathError):
    """Record was already resolved.

    Raised when a second staff member approves, rejects or resolves a
    record whose status has already moved to a terminal state.
    """

    code = ErrorCode.ALREADY_RESOLVED
    status_code = 409


class StaffNoteConflictError(CarepathError):
    """An automatic note update raced a staff-authored note.

    Staff edits always win; the automatic update is rejected.
    """

    code = ErrorCode.NOTE_CONFLICT
    status_code = 409


class ClassifierUnavailableError(CarepathError):
    """The external classifier could not produce a usable verdict."""

    code = ErrorCode.CLASSIFIER_UNAVAILABLE
    status_code = 503


class RateLimitError(CarepathError):
    """Rate limit exceeded."""

    code = ErrorCode.RATE_LIMITED
    status_code = 429


class StoreError(CarepathError):
    """Primary-path persistence failed.

    Raised when the pending record, published content or chat message
    cannot be written. Callers surface it so the user can retry without
    losing their draft.
    """

    code = ErrorCode.STORE_ERROR
    status_code = 500
