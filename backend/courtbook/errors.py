# backend/courtbook/errors.py
"""
Domain exceptions for the booking engine.

Each exception carries a message, a machine-readable code and optional
details, and knows the HTTP status it maps to at the API layer.
"""

from typing import Any, Optional

from fastapi import status


class BookingError(Exception):
    """Base exception for all booking engine errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "booking_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(BookingError):
    """Malformed or illogical input: backwards interval, past time, outside hours."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class NotFoundError(BookingError):
    """Court, venue or booking absent or inactive."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ConflictError(BookingError):
    """Requested interval is already held or booked."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "slot_unavailable"


class StateError(BookingError):
    """Illegal booking status transition."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "invalid_state"


class NoPricingCoverage(BookingError):
    """Interval is not covered by any active price rule."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "no_pricing_coverage"


class DependencyError(BookingError):
    """Cache or store I/O failure."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "dependency_unavailable"
