"""
Booking Store - persistence for bookings.

In-memory document store keyed by booking id. Records are copied on the
way in and out so callers can never mutate persisted state without an
explicit save.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional

from loguru import logger

from scheduling.models.booking import Booking, BookingStatus


class BookingStore:
    """
    In-memory booking store.

    In production, this should be replaced with a document store
    collection indexed on (provider_id, interval.start).
    """

    def __init__(self):
        self._bookings: Dict[str, Booking] = {}

    # Public accessor for testing
    @property
    def bookings(self) -> Dict[str, Booking]:
        """Access to the raw bookings dictionary."""
        return self._bookings

    def clear(self) -> None:
        self._bookings.clear()

    async def get(self, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking else None

    async def save(self, booking: Booking) -> Booking:
        """Insert or replace a booking."""
        self._bookings[booking.id] = booking.model_copy(deep=True)
        logger.debug(f"Persisted booking {booking.id} ({booking.status.value})")
        return booking

    async def list_for_provider(
        self, provider_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> List[Booking]:
        wanted = set(statuses) if statuses is not None else None
        results = [
            b.model_copy(deep=True)
            for b in self._bookings.values()
            if b.provider_id == provider_id and (wanted is None or b.status in wanted)
        ]
        results.sort(key=lambda b: b.interval.start)
        return results

    async def list_range(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        include_cancelled: bool = False,
    ) -> List[Booking]:
        """Bookings whose interval overlaps ``[start, end)``."""
        results = [
            b.model_copy(deep=True)
            for b in self._bookings.values()
            if b.provider_id == provider_id
            and (include_cancelled or b.is_active)
            and b.interval.start < end
            and start < b.interval.end
        ]
        results.sort(key=lambda b: b.interval.start)
        return results

    async def list_active(self, provider_id: str, day: date) -> List[Booking]:
        """Non-cancelled bookings of a provider touching ``day``."""
        day_start = datetime.combine(day, time.min)
        return await self.list_range(provider_id, day_start, day_start + timedelta(days=1))

    async def customer_history(self, customer_id: str, limit: int = 5) -> List[Booking]:
        """Completed bookings of a customer, most recent first."""
        history = [
            b.model_copy(deep=True)
            for b in self._bookings.values()
            if b.customer_id == customer_id and b.status == BookingStatus.COMPLETED
        ]
        history.sort(key=lambda b: b.interval.start, reverse=True)
        return history[:limit]

    async def completed_counts_by_time(self, provider_id: str) -> Counter:
        """Completed bookings of a provider counted per start ``HH:MM``."""
        return Counter(
            b.interval.time_label
            for b in self._bookings.values()
            if b.provider_id == provider_id and b.status == BookingStatus.COMPLETED
        )
