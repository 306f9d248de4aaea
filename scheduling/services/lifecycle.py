"""
Booking Lifecycle Manager - creation, status changes and rescheduling.

Every operation that changes which intervals a provider has committed to
runs its conflict check and its write while holding that provider's lock,
so two overlapping requests can never both be accepted.
"""

import asyncio
import re
from datetime import date, datetime, time
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from scheduling.config import RESCHEDULE_DEFAULT_REASON, get_settings
from scheduling.errors import (
    BookingValidationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from scheduling.models.booking import (
    ALLOWED_TRANSITIONS,
    Booking,
    BookingEvent,
    BookingStatus,
    ConflictCheck,
    ConflictingBooking,
    RescheduledBy,
    RescheduleMetadata,
    allowed_targets,
)
from scheduling.models.interval import TimeInterval
from scheduling.services.availability import validate_duration
from scheduling.services.conflicts import ConflictDetector
from scheduling.services.directory import DirectoryBase
from scheduling.services.store import BookingStore

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

StateChangeSink = Callable[[BookingEvent], Awaitable[None]]


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` (24h) into a time."""
    match = TIME_PATTERN.match(value.strip()) if value else None
    if not match:
        raise BookingValidationError("time", "Please enter valid time format (HH:MM)")
    return time(int(match.group(1)), int(match.group(2)))


def require_local_time(field: str, value: datetime) -> datetime:
    """Bookings are kept in naive local business time; reject offset-aware input."""
    if value.tzinfo is not None and value.utcoffset() is not None:
        raise BookingValidationError(field, "Times must be local, without a UTC offset")
    return value


class BookingLifecycleManager:
    """
    Owns the booking state machine for all providers.

    Args:
        directory: Source of services, customers and the stats projection
        store: Booking persistence
        detector: Overlap checker
        on_state_change: Optional async sink notified after each change
        clock: Returns "now"; used to reject bookings in the past
    """

    def __init__(
        self,
        directory: DirectoryBase,
        store: BookingStore,
        detector: Optional[ConflictDetector] = None,
        on_state_change: Optional[StateChangeSink] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = get_settings()
        self._directory = directory
        self._store = store
        self._detector = detector or ConflictDetector()
        self._on_state_change = on_state_change
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _provider_lock(self, provider_id: str) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = self._locks[provider_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_booking(self, provider_id: str, booking_id: str) -> Booking:
        booking = await self._store.get(booking_id)
        if booking is None or booking.provider_id != provider_id:
            raise NotFoundError("booking", booking_id)
        return booking

    async def _find_conflicts(
        self,
        provider_id: str,
        proposal: TimeInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        nearby = await self._store.list_range(provider_id, proposal.start, proposal.end)
        return self._detector.find_conflicts(provider_id, proposal, nearby, exclude_booking_id)

    async def check_conflicts(
        self,
        provider_id: str,
        day: date,
        time_of_day: str,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> ConflictCheck:
        """Dry-run conflict query; never writes."""
        validate_duration(duration_minutes, self.settings.min_booking_duration)
        start = datetime.combine(day, parse_time_of_day(time_of_day))
        proposal = TimeInterval.from_start(start, duration_minutes)
        conflicts = await self._find_conflicts(provider_id, proposal, exclude_booking_id)
        return ConflictCheck(
            has_conflicts=bool(conflicts),
            conflicts=[ConflictingBooking.from_booking(b) for b in conflicts],
        )

    async def calendar_view(
        self, provider_id: str, start: datetime, end: datetime
    ) -> List[Booking]:
        """Non-cancelled bookings starting within ``[start, end]``."""
        require_local_time("start", start)
        require_local_time("end", end)
        if end <= start:
            raise BookingValidationError("end", "End date must be after start date")
        bookings = await self._store.list_range(provider_id, start, end)
        return [b for b in bookings if start <= b.interval.start <= end]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create(
        self,
        provider_id: str,
        customer_id: str,
        service_id: str,
        day: date,
        time_of_day: str,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Create a pending booking.

        Raises:
            BookingValidationError: Malformed time or start in the past
            NotFoundError: Service or customer outside the provider's scope
            ConflictError: Slot overlaps a non-cancelled booking
        """
        start = datetime.combine(day, parse_time_of_day(time_of_day))

        service = await self._directory.get_service(provider_id, service_id)
        if service is None or not service.is_active:
            raise NotFoundError("service", service_id)
        customer = await self._directory.get_customer(provider_id, customer_id)
        if customer is None:
            raise NotFoundError("customer", customer_id)

        if start < self._clock():
            raise BookingValidationError("date", "Cannot create a booking in the past")
        validate_duration(service.duration_minutes, self.settings.min_booking_duration)

        interval = TimeInterval.from_start(start, service.duration_minutes)

        async with self._provider_lock(provider_id):
            conflicts = await self._find_conflicts(provider_id, interval)
            if conflicts:
                logger.warning(
                    f"Rejected booking for provider {provider_id} at {start.isoformat()}: "
                    f"conflicts with {[b.id for b in conflicts]}"
                )
                raise ConflictError([ConflictingBooking.from_booking(b) for b in conflicts])

            now = self._clock()
            booking = Booking(
                provider_id=provider_id,
                customer_id=customer_id,
                service_id=service_id,
                duration_minutes=service.duration_minutes,
                total_amount=service.price,
                interval=interval,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            await self._store.save(booking)

        logger.info(
            f"Booking created: {booking.id} for customer {customer_id} "
            f"on {booking.date.isoformat()} at {booking.time}"
        )
        await self._increment_customer_stats(customer_id, interval.start)
        await self._notify("created", booking)
        return booking

    async def update_status(
        self, provider_id: str, booking_id: str, new_status: BookingStatus
    ) -> Booking:
        """Move a booking along the state machine without touching its interval."""
        if new_status == BookingStatus.CANCELLED:
            return await self.cancel(provider_id, booking_id)

        async with self._provider_lock(provider_id):
            booking = await self.get_booking(provider_id, booking_id)
            if new_status not in ALLOWED_TRANSITIONS[booking.status]:
                raise InvalidTransitionError(
                    booking.status, new_status, allowed_targets(booking.status)
                )
            previous = booking.status
            booking.status = new_status
            booking.updated_at = self._clock()
            await self._store.save(booking)

        logger.info(f"Booking {booking_id}: {previous.value} -> {new_status.value}")
        await self._notify("status_changed", booking)
        return booking

    async def reschedule(
        self,
        provider_id: str,
        booking_id: str,
        new_start: datetime,
        reason: Optional[str] = None,
        rescheduled_by: RescheduledBy = RescheduledBy.USER,
    ) -> Booking:
        """
        Move a booking to ``new_start`` keeping its duration and status.

        On conflict the stored booking is left untouched.
        """
        require_local_time("new_start", new_start)
        async with self._provider_lock(provider_id):
            booking = await self.get_booking(provider_id, booking_id)
            if booking.is_terminal:
                raise InvalidTransitionError(
                    booking.status,
                    booking.status,
                    [],
                    message=f"Cannot reschedule a {booking.status.value} booking",
                )

            new_interval = TimeInterval.from_start(new_start, booking.duration_minutes)
            conflicts = await self._find_conflicts(provider_id, new_interval, booking.id)
            if conflicts:
                logger.warning(
                    f"Rejected reschedule of {booking_id} to {new_start.isoformat()}: "
                    f"conflicts with {[b.id for b in conflicts]}"
                )
                raise ConflictError(
                    [ConflictingBooking.from_booking(b) for b in conflicts],
                    message="Updated time conflicts with existing booking",
                )

            now = self._clock()
            rescheduled = booking.model_copy(
                update={
                    "original_interval": booking.interval,
                    "interval": new_interval,
                    "reschedule": RescheduleMetadata(
                        rescheduled_at=now,
                        rescheduled_by=rescheduled_by,
                        reason=reason or RESCHEDULE_DEFAULT_REASON,
                    ),
                    "has_conflicts": False,
                    "conflicts_with": [],
                    "updated_at": now,
                }
            )
            await self._store.save(rescheduled)

        logger.info(
            f"Booking rescheduled: {booking_id} from {booking.interval.start.isoformat()} "
            f"to {new_interval.start.isoformat()}"
        )
        await self._notify("rescheduled", rescheduled)
        return rescheduled

    async def cancel(self, provider_id: str, booking_id: str) -> Booking:
        """Cancel a non-terminal booking; the record is kept."""
        async with self._provider_lock(provider_id):
            booking = await self.get_booking(provider_id, booking_id)
            if BookingStatus.CANCELLED not in ALLOWED_TRANSITIONS[booking.status]:
                raise InvalidTransitionError(
                    booking.status, BookingStatus.CANCELLED, allowed_targets(booking.status)
                )
            booking.status = BookingStatus.CANCELLED
            booking.has_conflicts = False
            booking.conflicts_with = []
            booking.updated_at = self._clock()
            await self._store.save(booking)

        logger.info(f"Booking cancelled: {booking_id}")
        await self._notify("cancelled", booking)
        return booking

    async def refresh_conflict_snapshot(self, provider_id: str, booking_id: str) -> Booking:
        """Recompute and persist the display-only conflict fields of a booking."""
        async with self._provider_lock(provider_id):
            booking = await self.get_booking(provider_id, booking_id)
            conflicts: List[Booking] = []
            if booking.is_active:
                conflicts = await self._find_conflicts(provider_id, booking.interval, booking.id)
            booking.has_conflicts = bool(conflicts)
            booking.conflicts_with = [b.id for b in conflicts]
            await self._store.save(booking)
        return booking

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _increment_customer_stats(self, customer_id: str, booking_date: datetime) -> None:
        # Projection only; the booking is already persisted.
        try:
            await self._directory.increment_customer_stats(customer_id, booking_date)
        except Exception as e:
            logger.error(f"Failed to update stats for customer {customer_id}: {e}")

    async def _notify(self, action: str, booking: Booking) -> None:
        if self._on_state_change is None:
            return
        event = BookingEvent(
            action=action,
            booking_id=booking.id,
            provider_id=booking.provider_id,
            status=booking.status,
            occurred_at=self._clock(),
        )
        try:
            await self._on_state_change(event)
        except Exception as e:
            logger.error(f"State change notification failed for {booking.id}: {e}")
