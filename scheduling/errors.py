"""
Typed errors raised by the scheduling core.

Each error carries a machine-readable code so the API layer can map it
onto an HTTP status without inspecting messages.
"""

from typing import List, Optional, Sequence

from scheduling.models.booking import BookingStatus, ConflictingBooking


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error_code": self.code, "message": self.message}


class BookingValidationError(SchedulingError):
    """Input rejected before any conflict check."""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {**super().to_dict(), "field": self.field}


class ConflictError(SchedulingError):
    """Proposed interval overlaps one or more non-cancelled bookings."""

    code = "BOOKING_CONFLICT"

    def __init__(self, conflicts: Sequence[ConflictingBooking], message: Optional[str] = None):
        super().__init__(message or "Time slot conflicts with existing booking")
        self.conflicts: List[ConflictingBooking] = list(conflicts)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "conflicts": [c.model_dump(mode="json") for c in self.conflicts],
        }


class NotFoundError(SchedulingError):
    """Referenced resource is missing or outside the provider's scope."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource.capitalize()} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id

    def to_dict(self) -> dict:
        return {**super().to_dict(), "resource": self.resource}


class InvalidTransitionError(SchedulingError):
    """Status change not permitted by the booking state machine."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        current: BookingStatus,
        requested: BookingStatus,
        allowed: Sequence[BookingStatus],
        message: Optional[str] = None,
    ):
        allowed_values = [s.value for s in allowed]
        super().__init__(
            message
            or (
                f"Cannot move booking from '{current.value}' to '{requested.value}'. "
                f"Allowed: {allowed_values}"
            )
        )
        self.current = current
        self.requested = requested
        self.allowed = list(allowed)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "current_status": self.current.value,
            "allowed": [s.value for s in self.allowed],
        }
