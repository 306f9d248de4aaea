"""
Request and response models for the scheduling API.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from scheduling.models.booking import Booking, BookingStatus, RescheduledBy
from scheduling.models.interval import TimeInterval

# ============================================================================
# Requests
# ============================================================================


class CreateBookingRequest(BaseModel):
    """Request to book a service for a customer."""

    customer_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    date: date
    time: str = Field(..., description="Start time as HH:MM")
    notes: Optional[str] = Field(default=None, max_length=500)


class ConflictCheckRequest(BaseModel):
    """Dry-run conflict query."""

    date: date
    time: str = Field(..., description="Start time as HH:MM")
    duration: int = Field(..., ge=1, description="Length in minutes")
    exclude_booking_id: Optional[str] = None


class RescheduleRequest(BaseModel):
    """Move a booking to a new start time."""

    new_start: datetime
    reason: Optional[str] = Field(default=None, max_length=500)
    rescheduled_by: RescheduledBy = RescheduledBy.USER


class StatusUpdateRequest(BaseModel):
    status: BookingStatus


class RecommendationRequest(BaseModel):
    """Ask for ranked slots on a date."""

    customer_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    date: date
    preferred_time: Optional[str] = Field(default=None, description="Preferred HH:MM")


# ============================================================================
# Responses
# ============================================================================


class BookingResponse(BaseModel):
    success: bool = True
    message: str = ""
    booking: Booking


class RescheduleResponse(BaseModel):
    success: bool = True
    message: str = "Booking rescheduled successfully"
    booking: Booking
    original_interval: TimeInterval
    new_interval: TimeInterval


class CalendarResponse(BaseModel):
    bookings: List[Booking]
    count: int
