"""
Booking-related data models.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from scheduling.models.interval import TimeInterval


class BookingStatus(str, Enum):
    """Lifecycle states of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Status -> statuses it may move to. Completed and cancelled are terminal.
ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

STATUS_ORDER = [
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
]


def allowed_targets(status: BookingStatus) -> List[BookingStatus]:
    """Statuses reachable from ``status`` in a stable order."""
    targets = ALLOWED_TRANSITIONS[status]
    return [s for s in STATUS_ORDER if s in targets]


class RescheduledBy(str, Enum):
    """Who moved a booking."""

    USER = "user"
    CUSTOMER = "customer"
    SYSTEM = "system"


class RescheduleMetadata(BaseModel):
    """Audit trail of the latest reschedule."""

    rescheduled_at: datetime
    rescheduled_by: RescheduledBy = RescheduledBy.USER
    reason: str = Field(default="", max_length=500)


class Booking(BaseModel):
    """
    A customer's appointment with a provider.

    Duration and price are copied from the service at creation time so
    later service edits do not alter historical bookings.
    """

    id: str = Field(default_factory=lambda: uuid4().hex, description="Booking identifier")
    provider_id: str = Field(description="Provider whose calendar holds the booking")
    customer_id: str = Field(description="Customer the booking is for")
    service_id: str = Field(description="Booked service")
    duration_minutes: int = Field(description="Copied from the service", ge=1)
    total_amount: float = Field(default=0.0, description="Copied from the service price", ge=0)
    interval: TimeInterval = Field(description="Occupied time")
    original_interval: Optional[TimeInterval] = Field(
        default=None, description="Interval before the latest reschedule"
    )
    status: BookingStatus = Field(default=BookingStatus.PENDING)
    notes: Optional[str] = Field(default=None, max_length=500)

    # Display-only snapshot, refreshed explicitly by the lifecycle manager
    has_conflicts: bool = Field(default=False)
    conflicts_with: List[str] = Field(default_factory=list)

    reschedule: Optional[RescheduleMetadata] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def date(self) -> date:
        return self.interval.start.date()

    @property
    def time(self) -> str:
        return self.interval.time_label

    @property
    def is_active(self) -> bool:
        """Whether the booking still occupies its interval."""
        return self.status != BookingStatus.CANCELLED

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]


class ConflictingBooking(BaseModel):
    """A booking that collides with a proposed interval."""

    id: str
    interval: TimeInterval

    @classmethod
    def from_booking(cls, booking: Booking) -> "ConflictingBooking":
        return cls(id=booking.id, interval=booking.interval)


class ConflictCheck(BaseModel):
    """Result of a dry-run conflict query."""

    has_conflicts: bool
    conflicts: List[ConflictingBooking] = Field(default_factory=list)


class BookingEvent(BaseModel):
    """Notification emitted after a booking changes state."""

    action: str = Field(description="created, status_changed, rescheduled or cancelled")
    booking_id: str
    provider_id: str
    status: BookingStatus
    occurred_at: datetime = Field(default_factory=datetime.now)
