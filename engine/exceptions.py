"""
Error taxonomy for the booking engine.

Every error carries a machine-readable `error_code` (mirrors the codes used
in ValidationResult) and a human-readable message that is safe to surface
to the caller. The API layer maps each class to an HTTP status.
"""

from typing import Any


class BookingEngineError(Exception):
    """Base class for all engine errors."""

    error_code = "ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "error_message": self.message,
            "details": self.details,
        }


class BookingValidationError(BookingEngineError):
    """Malformed or out-of-policy interval, or an illegal status change."""

    error_code = "VALIDATION_ERROR"


class BookingConflictError(BookingEngineError):
    """Buffered elevator overlap with an active booking."""

    error_code = "CONFLICT"


class NotFoundError(BookingEngineError):
    """Unknown booking, user or payment record id."""

    error_code = "NOT_FOUND"


class AuthorizationError(BookingEngineError):
    """Actor's role lacks permission, including self-modification guards."""

    error_code = "FORBIDDEN"


class DuplicateMatchError(BookingEngineError):
    """Invoice already linked to a booking; treated as already handled."""

    error_code = "DUPLICATE_MATCH"
