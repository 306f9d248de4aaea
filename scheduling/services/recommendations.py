"""
Recommendation Engine - ranks candidate slots for a customer.

Each conflict-free candidate gets integer points for availability,
customer preference, business-optimal hours, historical demand and
spacing from neighbouring bookings. Scoring is a pure function of the
booking snapshot taken at the start of the request.
"""

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

from loguru import logger

from scheduling.config import DAY_NAMES, SLOT_GRANULARITY_MINUTES, get_settings
from scheduling.errors import NotFoundError
from scheduling.models.booking import Booking, BookingStatus
from scheduling.models.interval import TimeInterval
from scheduling.models.recommendation import (
    BusinessPatterns,
    RecommendationFactors,
    RecommendationResult,
    SlotRecommendation,
)
from scheduling.services.availability import iter_candidate_intervals
from scheduling.services.conflicts import ConflictDetector
from scheduling.services.directory import DirectoryBase
from scheduling.services.lifecycle import parse_time_of_day
from scheduling.services.store import BookingStore

AVAILABILITY_POINTS = 25
PREFERRED_TIME_POINTS = 30
HISTORY_POINTS_PER_MATCH = 8
HISTORY_POINTS_CAP = 25
NEW_CUSTOMER_POINTS = 10
OPTIMAL_HOURS = (10, 14)
GOOD_HOURS = (9, 16)
OPTIMAL_HOURS_POINTS = 20
GOOD_HOURS_POINTS = 15
OFF_HOURS_POINTS = 5
DEMAND_POINTS_PER_BOOKING = 3
DEMAND_POINTS_CAP = 15
BUFFER_BOTH_SIDES_POINTS = 10
BUFFER_ONE_SIDE_POINTS = 5

BASE_CONFIDENCE = 50
MAX_CONFIDENCE = 95
RECENT_ACTIVITY_DAYS = 30


def _has_buffer_before(candidate: TimeInterval, bookings: Iterable[Booking], gap: timedelta) -> bool:
    return not any(
        b.interval.end <= candidate.start and candidate.start - b.interval.end < gap
        for b in bookings
    )


def _has_buffer_after(candidate: TimeInterval, bookings: Iterable[Booking], gap: timedelta) -> bool:
    return not any(
        b.interval.start >= candidate.end and b.interval.start - candidate.end < gap
        for b in bookings
    )


def score_slot(
    candidate: TimeInterval,
    bookings: Sequence[Booking],
    history_times: Sequence[str],
    demand_by_time: Counter,
    preferred_time: Optional[str] = None,
    granularity_minutes: int = SLOT_GRANULARITY_MINUTES,
) -> RecommendationFactors:
    """
    Score a candidate that has already passed the conflict gate.

    Args:
        candidate: Slot being scored
        bookings: The day's non-cancelled bookings
        history_times: ``HH:MM`` start times of the customer's recent completed bookings
        demand_by_time: Provider's completed bookings counted per ``HH:MM``
        preferred_time: Explicitly requested ``HH:MM``, if any
        granularity_minutes: Minimum gap that counts as breathing room
    """
    label = candidate.time_label
    factors = RecommendationFactors(availability=AVAILABILITY_POINTS)

    if preferred_time and label == preferred_time:
        factors.customer_preference = PREFERRED_TIME_POINTS
    elif history_times:
        matches = sum(1 for t in history_times if t == label)
        factors.customer_preference = min(HISTORY_POINTS_CAP, matches * HISTORY_POINTS_PER_MATCH)
    else:
        factors.customer_preference = NEW_CUSTOMER_POINTS

    hour = candidate.start.hour
    if OPTIMAL_HOURS[0] <= hour <= OPTIMAL_HOURS[1]:
        factors.business_optimal = OPTIMAL_HOURS_POINTS
    elif GOOD_HOURS[0] <= hour <= GOOD_HOURS[1]:
        factors.business_optimal = GOOD_HOURS_POINTS
    else:
        factors.business_optimal = OFF_HOURS_POINTS

    factors.historical_demand = min(
        DEMAND_POINTS_CAP, demand_by_time.get(label, 0) * DEMAND_POINTS_PER_BOOKING
    )

    gap = timedelta(minutes=granularity_minutes)
    before = _has_buffer_before(candidate, bookings, gap)
    after = _has_buffer_after(candidate, bookings, gap)
    if before and after:
        factors.buffer_time = BUFFER_BOTH_SIDES_POINTS
    elif before or after:
        factors.buffer_time = BUFFER_ONE_SIDE_POINTS

    return factors


def recommendation_reason(factors: RecommendationFactors) -> str:
    """Explain a score by its dominant factor."""
    if factors.customer_preference > 20:
        return "Matches your usual time preference"
    if factors.business_optimal > 15:
        return "Optimal business hours"
    if factors.buffer_time > 5:
        return "Good spacing between appointments"
    return "Available slot"


def confidence_score(
    history: Sequence[Booking], average_bookings_per_day: float, now: datetime
) -> int:
    """
    Rate how well-founded a ranking is.

    Deeper customer history, a busy provider and a recent visit each add
    to the base confidence.
    """
    confidence = BASE_CONFIDENCE
    if len(history) >= 5:
        confidence += 20
    elif len(history) >= 2:
        confidence += 10

    if average_bookings_per_day > 1:
        confidence += 15

    if history and (now - history[0].interval.start).days < RECENT_ACTIVITY_DAYS:
        confidence += 10

    return min(MAX_CONFIDENCE, confidence)


class RecommendationEngine:
    """Ranks a provider day's candidate slots for one customer."""

    def __init__(
        self,
        directory: DirectoryBase,
        store: BookingStore,
        detector: Optional[ConflictDetector] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = get_settings()
        self._directory = directory
        self._store = store
        self._detector = detector or ConflictDetector()
        self._clock = clock

    async def recommend(
        self,
        provider_id: str,
        customer_id: str,
        service_id: str,
        day: date,
        preferred_time: Optional[str] = None,
    ) -> RecommendationResult:
        """
        Return up to ``MAX_RECOMMENDATIONS`` scored slots, best first.

        Ties are broken by earliest start time.
        """
        if preferred_time:
            preferred_time = parse_time_of_day(preferred_time).strftime("%H:%M")

        service = await self._directory.get_service(provider_id, service_id)
        if service is None or not service.is_active:
            raise NotFoundError("service", service_id)
        customer = await self._directory.get_customer(provider_id, customer_id)
        if customer is None:
            raise NotFoundError("customer", customer_id)

        hours = (await self._directory.get_working_hours(provider_id)).for_date(day)
        if not hours.is_open:
            return RecommendationResult(
                date=day,
                is_closed=True,
                message=f"Provider is closed on {DAY_NAMES[day.weekday()]}s",
            )

        bookings = await self._store.list_active(provider_id, day)
        history = await self._store.customer_history(
            customer_id, limit=self.settings.customer_history_limit
        )
        history_times = [b.interval.time_label for b in history]
        demand = await self._store.completed_counts_by_time(provider_id)
        patterns = await self.business_patterns(provider_id)
        confidence = confidence_score(history, patterns.average_bookings_per_day, self._clock())

        scored: List[SlotRecommendation] = []
        for candidate in iter_candidate_intervals(day, hours, service.duration_minutes):
            if self._detector.has_conflict(provider_id, candidate, bookings):
                continue
            factors = score_slot(candidate, bookings, history_times, demand, preferred_time)
            scored.append(
                SlotRecommendation(
                    interval=candidate,
                    time=candidate.time_label,
                    end_time=candidate.end.strftime("%H:%M"),
                    score=factors.total,
                    factors=factors,
                    reason=recommendation_reason(factors),
                )
            )

        scored.sort(key=lambda r: (-r.score, r.interval.start))
        top = scored[: self.settings.max_recommendations]
        logger.info(
            f"Ranked {len(scored)} candidate slots for customer {customer_id} "
            f"with provider {provider_id} on {day.isoformat()}"
        )
        return RecommendationResult(
            date=day,
            recommendations=top,
            total_available=len(scored),
            confidence=confidence,
            message=(
                f"{len(top)} recommended slots on {day.isoformat()}."
                if top
                else f"No slots available on {day.isoformat()}."
            ),
        )

    async def business_patterns(
        self, provider_id: str, window_days: int = 30
    ) -> BusinessPatterns:
        """Summarise recent completed and confirmed bookings by weekday and hour."""
        since = self._clock().date() - timedelta(days=window_days)
        bookings = [
            b
            for b in await self._store.list_for_provider(
                provider_id, statuses=[BookingStatus.COMPLETED, BookingStatus.CONFIRMED]
            )
            if b.date >= since
        ]

        busy_days = Counter(DAY_NAMES[b.date.weekday()] for b in bookings)
        busy_hours = Counter(b.interval.start.hour for b in bookings)
        peak_hours = [
            hour
            for hour, _ in sorted(busy_hours.items(), key=lambda item: (-item[1], item[0]))[:3]
        ]
        return BusinessPatterns(
            busy_days=dict(busy_days),
            busy_hours=dict(busy_hours),
            peak_hours=peak_hours,
            average_bookings_per_day=len(bookings) / window_days,
            window_days=window_days,
            since=since,
        )
