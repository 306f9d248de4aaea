"""
Provider-owned data consumed read-only by the scheduling core.
"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from scheduling.config import DAY_NAMES


class DayHours(BaseModel):
    """Opening hours for a single day of the week."""

    is_open: bool = Field(default=True, description="Whether the provider works that day")
    open: time = Field(default=time(9, 0), description="Opening time of day")
    close: time = Field(default=time(17, 0), description="Closing time of day")

    @model_validator(mode="after")
    def check_window(self) -> "DayHours":
        if self.is_open and self.close <= self.open:
            raise ValueError("Closing time must be after opening time")
        return self

    def window(self, day: date) -> tuple[datetime, datetime]:
        """Opening and closing instants on ``day``."""
        return datetime.combine(day, self.open), datetime.combine(day, self.close)


def _closed_day() -> DayHours:
    return DayHours(is_open=False)


class WorkingHoursTemplate(BaseModel):
    """
    Weekly working hours of a provider.

    Defaults match a fresh provider profile: open Monday to Saturday
    09:00-17:00, closed on Sunday.
    """

    monday: DayHours = Field(default_factory=DayHours)
    tuesday: DayHours = Field(default_factory=DayHours)
    wednesday: DayHours = Field(default_factory=DayHours)
    thursday: DayHours = Field(default_factory=DayHours)
    friday: DayHours = Field(default_factory=DayHours)
    saturday: DayHours = Field(default_factory=DayHours)
    sunday: DayHours = Field(default_factory=_closed_day)

    def for_date(self, day: date) -> DayHours:
        return getattr(self, DAY_NAMES[day.weekday()])


class ServiceInfo(BaseModel):
    """A bookable service offered by a provider."""

    id: str = Field(description="Service identifier")
    provider_id: str = Field(description="Owning provider")
    name: str = Field(description="Display name", min_length=1, max_length=100)
    duration_minutes: int = Field(description="Service length", ge=15)
    price: float = Field(default=0.0, description="Price charged per booking", ge=0)
    is_active: bool = Field(default=True)


class CustomerInfo(BaseModel):
    """A provider's customer with the booking-count projection."""

    id: str = Field(description="Customer identifier")
    provider_id: str = Field(description="Owning provider")
    name: str = Field(default="", max_length=100)
    total_bookings: int = Field(default=0, ge=0)
    last_booking: Optional[datetime] = Field(default=None)
