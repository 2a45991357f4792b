"""Exceptions raised by the scheduling engine and mapped to HTTP in main.py."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from venue_booking.domain.models import AvailabilityResult


class SchedulingError(Exception):
    """Base exception for all scheduling engine errors."""

    status_code = 400
    code = "SCHEDULING_ERROR"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class DomainValidationError(SchedulingError):
    """Caller-fixable input problem (bad range, missing target, bad location)."""

    code = "VALIDATION_ERROR"


class InvalidRangeError(DomainValidationError, ValueError):
    """Raised when a time range is missing a bound or ends before it starts."""

    code = "INVALID_RANGE"


class NotFoundError(SchedulingError):
    status_code = 404
    code = "NOT_FOUND"


class AvailabilityConflictError(SchedulingError):
    """Raised when the requested slot overlaps blocking bookings.

    Carries the full result so callers can show which events collide.
    """

    status_code = 409
    code = "AVAILABILITY_CONFLICT"

    def __init__(self, result: AvailabilityResult) -> None:
        super().__init__("Availability conflict")
        self.result = result


class TechCapacityExceededError(SchedulingError):
    status_code = 409
    code = "TECH_CAPACITY_EXCEEDED"


class AlreadyClosedError(SchedulingError):
    """Raised when a decision is applied to a conflict that is already closed."""

    status_code = 409
    code = "CONFLICT_ALREADY_CLOSED"


class PriorityTieError(SchedulingError):
    """Raised when a high-priority event overlaps another high-priority event."""

    status_code = 409
    code = "PRIORITY_TIE"
