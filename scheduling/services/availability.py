"""
Availability Calculator - bookable slots for a provider day.

Candidates are walked from the opening time in fixed granularity steps.
A candidate survives if it ends by closing time and does not overlap any
of the day's non-cancelled bookings.
"""

from datetime import date, timedelta
from typing import Iterable, Iterator, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from scheduling.config import DAY_NAMES, SLOT_GRANULARITY_MINUTES, get_settings
from scheduling.errors import BookingValidationError
from scheduling.models.booking import Booking
from scheduling.models.interval import TimeInterval
from scheduling.models.provider import DayHours
from scheduling.services.conflicts import ConflictDetector
from scheduling.services.directory import DirectoryBase
from scheduling.services.store import BookingStore


class DayAvailability(BaseModel):
    """Available slots for one provider day."""

    date: date
    duration_minutes: int
    is_closed: bool = Field(
        default=False, description="Provider does not work that day (distinct from fully booked)"
    )
    slots: List[TimeInterval] = Field(default_factory=list)
    message: str = ""


def iter_candidate_intervals(
    day: date,
    hours: DayHours,
    duration_minutes: int,
    granularity_minutes: int = SLOT_GRANULARITY_MINUTES,
) -> Iterator[TimeInterval]:
    """
    Yield every slot of ``duration_minutes`` inside the day's open window.

    Slots start at ``open + k * granularity`` and end no later than close.
    Nothing is yielded on a closed day.
    """
    if not hours.is_open:
        return
    open_at, close_at = hours.window(day)
    step = timedelta(minutes=granularity_minutes)
    length = timedelta(minutes=duration_minutes)

    start = open_at
    while start + length <= close_at:
        yield TimeInterval(start=start, end=start + length)
        start += step


def iter_available_intervals(
    provider_id: str,
    day: date,
    hours: DayHours,
    duration_minutes: int,
    bookings: Iterable[Booking],
    detector: Optional[ConflictDetector] = None,
    granularity_minutes: int = SLOT_GRANULARITY_MINUTES,
) -> Iterator[TimeInterval]:
    """Candidate slots that do not collide with ``bookings``."""
    detector = detector or ConflictDetector()
    existing = list(bookings)
    for candidate in iter_candidate_intervals(day, hours, duration_minutes, granularity_minutes):
        if not detector.has_conflict(provider_id, candidate, existing):
            yield candidate


def validate_duration(duration_minutes: int, minimum: int) -> None:
    """Reject slot lengths shorter than the configured minimum."""
    if duration_minutes < minimum:
        raise BookingValidationError("duration", f"Duration must be at least {minimum} minutes")


class AvailabilityCalculator:
    """Turns working hours and existing bookings into bookable slots."""

    def __init__(
        self,
        directory: DirectoryBase,
        store: BookingStore,
        detector: Optional[ConflictDetector] = None,
    ):
        self.settings = get_settings()
        self._directory = directory
        self._store = store
        self._detector = detector or ConflictDetector()

    async def get_available_slots(
        self, provider_id: str, day: date, duration_minutes: int
    ) -> DayAvailability:
        """
        Compute the bookable slots of a provider on ``day``.

        Args:
            provider_id: Provider whose calendar is queried
            day: Target date
            duration_minutes: Length of the slot being sought

        Returns:
            DayAvailability with ``is_closed`` set on non-working days
        """
        validate_duration(duration_minutes, self.settings.min_booking_duration)
        template = await self._directory.get_working_hours(provider_id)
        hours = template.for_date(day)

        if not hours.is_open:
            day_name = DAY_NAMES[day.weekday()]
            logger.debug(f"Provider {provider_id} closed on {day.isoformat()}")
            return DayAvailability(
                date=day,
                duration_minutes=duration_minutes,
                is_closed=True,
                message=f"Provider is closed on {day_name}s",
            )

        bookings = await self._store.list_active(provider_id, day)
        slots = list(
            iter_available_intervals(
                provider_id, day, hours, duration_minutes, bookings, self._detector
            )
        )

        logger.info(
            f"Found {len(slots)} available slots for provider {provider_id} on {day.isoformat()}"
        )
        if slots:
            message = f"{len(slots)} time slots available on {day.isoformat()}."
        else:
            message = f"No slots available on {day.isoformat()}."
        return DayAvailability(
            date=day,
            duration_minutes=duration_minutes,
            slots=slots,
            message=message,
        )
