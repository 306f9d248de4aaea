"""
Conflict Detector - overlap checks against a provider's bookings.

Conflicts are only ever computed between bookings of the same provider;
bookings from other providers passed in are ignored.
"""

from typing import Iterable, List, Optional, Tuple

from scheduling.models.booking import Booking, ConflictCheck, ConflictingBooking
from scheduling.models.interval import TimeInterval, overlaps


class ConflictDetector:
    """Stateless overlap queries over a snapshot of bookings."""

    def find_conflicts(
        self,
        provider_id: str,
        proposal: TimeInterval,
        bookings: Iterable[Booking],
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Return the non-cancelled bookings that overlap ``proposal``.

        Args:
            provider_id: Provider whose calendar is checked
            proposal: Interval being proposed
            bookings: Candidate bookings (typically one day's worth)
            exclude_booking_id: Booking to ignore, e.g. the one being moved

        Returns:
            Overlapping bookings ordered by start time
        """
        conflicts = [
            booking
            for booking in bookings
            if booking.provider_id == provider_id
            and booking.is_active
            and booking.id != exclude_booking_id
            and overlaps(proposal, booking.interval)
        ]
        conflicts.sort(key=lambda b: (b.interval.start, b.id))
        return conflicts

    def has_conflict(
        self,
        provider_id: str,
        proposal: TimeInterval,
        bookings: Iterable[Booking],
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        return bool(
            self.find_conflicts(provider_id, proposal, bookings, exclude_booking_id)
        )

    def check(
        self,
        provider_id: str,
        proposal: TimeInterval,
        bookings: Iterable[Booking],
        exclude_booking_id: Optional[str] = None,
    ) -> ConflictCheck:
        conflicts = self.find_conflicts(provider_id, proposal, bookings, exclude_booking_id)
        return ConflictCheck(
            has_conflicts=bool(conflicts),
            conflicts=[ConflictingBooking.from_booking(b) for b in conflicts],
        )


def find_overlapping_pairs(bookings: Iterable[Booking]) -> List[Tuple[Booking, Booking]]:
    """All pairs of active same-provider bookings whose intervals overlap."""
    active = sorted(
        (b for b in bookings if b.is_active),
        key=lambda b: (b.provider_id, b.interval.start),
    )
    pairs = []
    for i, first in enumerate(active):
        for second in active[i + 1 :]:
            if (
                second.provider_id != first.provider_id
                or second.interval.start >= first.interval.end
            ):
                break
            pairs.append((first, second))
    return pairs
