"""
Unit tests for the booking lifecycle manager.
"""

import asyncio
from datetime import date, timezone

import pytest

from scheduling.errors import (
    BookingValidationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from scheduling.models.booking import BookingStatus, RescheduledBy
from scheduling.models.interval import TimeInterval
from scheduling.services.conflicts import find_overlapping_pairs
from scheduling.services.lifecycle import BookingLifecycleManager, parse_time_of_day
from scheduling.services.store import BookingStore
from tests.factories import (
    CUSTOMER_ID,
    FIXED_NOW,
    MONDAY,
    NEW_CUSTOMER_ID,
    OTHER_PROVIDER_ID,
    PROVIDER_ID,
    SERVICE_ID,
    SHORT_SERVICE_ID,
    at,
    make_booking,
)


async def create(lifecycle, hhmm, service_id=SERVICE_ID, customer_id=CUSTOMER_ID, day=MONDAY):
    return await lifecycle.create(PROVIDER_ID, customer_id, service_id, day, hhmm)


async def assert_calendar_consistent(store):
    assert find_overlapping_pairs(store.bookings.values()) == []


class TestParseTime:
    @pytest.mark.parametrize("value,expected", [("09:00", (9, 0)), ("9:30", (9, 30)), ("23:59", (23, 59))])
    def test_valid(self, value, expected):
        parsed = parse_time_of_day(value)
        assert (parsed.hour, parsed.minute) == expected

    @pytest.mark.parametrize("value", ["24:00", "9", "09:60", "", "noon"])
    def test_invalid(self, value):
        with pytest.raises(BookingValidationError) as exc_info:
            parse_time_of_day(value)
        assert exc_info.value.field == "time"


class TestCreate:
    """Test booking creation."""

    @pytest.mark.asyncio
    async def test_create_pending_booking(self, lifecycle, directory):
        booking = await create(lifecycle, "14:00")

        assert booking.status == BookingStatus.PENDING
        assert booking.interval == TimeInterval(
            start=at(MONDAY, "14:00"), end=at(MONDAY, "15:00")
        )
        assert booking.duration_minutes == 60
        assert booking.total_amount == 80.0
        assert booking.original_interval is None

        customer = await directory.get_customer(PROVIDER_ID, CUSTOMER_ID)
        assert customer.total_bookings == 1
        assert customer.last_booking == at(MONDAY, "14:00")

    @pytest.mark.asyncio
    async def test_service_duration_copied_not_referenced(self, lifecycle, directory, store):
        booking = await create(lifecycle, "10:00")
        service = await directory.get_service(PROVIDER_ID, SERVICE_ID)
        directory.add_service(service.model_copy(update={"duration_minutes": 120, "price": 10.0}))

        stored = await store.get(booking.id)
        assert stored.duration_minutes == 60
        assert stored.total_amount == 80.0

    @pytest.mark.asyncio
    async def test_conflict_rejected_without_write(self, lifecycle, store):
        existing = await create(lifecycle, "14:00")

        with pytest.raises(ConflictError) as exc_info:
            await create(lifecycle, "14:30", customer_id=NEW_CUSTOMER_ID)

        assert [c.id for c in exc_info.value.conflicts] == [existing.id]
        assert exc_info.value.conflicts[0].interval == existing.interval
        assert len(store.bookings) == 1

    @pytest.mark.asyncio
    async def test_adjacent_bookings_allowed(self, lifecycle):
        await create(lifecycle, "14:00")
        after = await create(lifecycle, "15:00")
        before = await create(lifecycle, "13:30", service_id=SHORT_SERVICE_ID)
        assert after.interval.start == at(MONDAY, "15:00")
        assert before.interval.end == at(MONDAY, "14:00")

    @pytest.mark.asyncio
    async def test_other_provider_bookings_do_not_block(self, lifecycle, store):
        await store.save(make_booking(MONDAY, "14:00", provider_id=OTHER_PROVIDER_ID))
        booking = await create(lifecycle, "14:00")
        assert booking.provider_id == PROVIDER_ID

    @pytest.mark.asyncio
    async def test_past_date_rejected(self, lifecycle):
        with pytest.raises(BookingValidationError) as exc_info:
            await lifecycle.create(
                PROVIDER_ID, CUSTOMER_ID, SERVICE_ID, date(2023, 12, 1), "10:00"
            )
        assert exc_info.value.field == "date"

    @pytest.mark.asyncio
    async def test_bad_time_rejected(self, lifecycle):
        with pytest.raises(BookingValidationError):
            await create(lifecycle, "25:00")

    @pytest.mark.asyncio
    async def test_unknown_service_and_customer(self, lifecycle):
        with pytest.raises(NotFoundError) as exc_info:
            await create(lifecycle, "10:00", service_id="nope")
        assert exc_info.value.resource == "service"

        with pytest.raises(NotFoundError) as exc_info:
            await create(lifecycle, "10:00", customer_id="nope")
        assert exc_info.value.resource == "customer"

    @pytest.mark.asyncio
    async def test_service_of_another_provider_not_found(self, lifecycle):
        with pytest.raises(NotFoundError):
            await create(lifecycle, "10:00", service_id="svc-window")

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_slot(self, lifecycle):
        first = await create(lifecycle, "09:00")
        await lifecycle.cancel(PROVIDER_ID, first.id)

        second = await create(lifecycle, "09:00", customer_id=NEW_CUSTOMER_ID)
        assert second.interval == first.interval


class TestStatusTransitions:
    """Test the booking state machine."""

    @pytest.mark.asyncio
    async def test_happy_path(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        for status in (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED):
            booking = await lifecycle.update_status(PROVIDER_ID, booking.id, status)
            assert booking.status == status

    @pytest.mark.asyncio
    async def test_status_change_keeps_interval(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        updated = await lifecycle.update_status(PROVIDER_ID, booking.id, BookingStatus.CONFIRMED)
        assert updated.interval == booking.interval

    @pytest.mark.asyncio
    async def test_skipping_states_rejected(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await lifecycle.update_status(PROVIDER_ID, booking.id, BookingStatus.COMPLETED)
        assert exc_info.value.allowed == [BookingStatus.CONFIRMED, BookingStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_same_status_rejected(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        with pytest.raises(InvalidTransitionError):
            await lifecycle.update_status(PROVIDER_ID, booking.id, BookingStatus.PENDING)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path",
        [
            [],
            [BookingStatus.CONFIRMED],
            [BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS],
        ],
    )
    async def test_cancel_from_non_terminal(self, lifecycle, store, path):
        booking = await create(lifecycle, "10:00")
        for status in path:
            await lifecycle.update_status(PROVIDER_ID, booking.id, status)

        cancelled = await lifecycle.cancel(PROVIDER_ID, booking.id)

        assert cancelled.status == BookingStatus.CANCELLED
        assert booking.id in store.bookings

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        for status in (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED):
            await lifecycle.update_status(PROVIDER_ID, booking.id, status)

        with pytest.raises(InvalidTransitionError):
            await lifecycle.cancel(PROVIDER_ID, booking.id)

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        await lifecycle.update_status(PROVIDER_ID, booking.id, BookingStatus.CANCELLED)

        with pytest.raises(InvalidTransitionError):
            await lifecycle.update_status(PROVIDER_ID, booking.id, BookingStatus.CONFIRMED)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.cancel(PROVIDER_ID, booking.id)

    @pytest.mark.asyncio
    async def test_booking_scoped_to_provider(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        with pytest.raises(NotFoundError):
            await lifecycle.get_booking(OTHER_PROVIDER_ID, booking.id)
        with pytest.raises(NotFoundError):
            await lifecycle.cancel(OTHER_PROVIDER_ID, booking.id)


class TestReschedule:
    """Test moving bookings."""

    @pytest.mark.asyncio
    async def test_reschedule_to_free_slot(self, lifecycle):
        booking = await create(lifecycle, "14:00")
        await lifecycle.update_status(PROVIDER_ID, booking.id, BookingStatus.CONFIRMED)

        moved = await lifecycle.reschedule(PROVIDER_ID, booking.id, at(MONDAY, "15:00"))

        assert moved.original_interval == TimeInterval(
            start=at(MONDAY, "14:00"), end=at(MONDAY, "15:00")
        )
        assert moved.interval == TimeInterval(start=at(MONDAY, "15:00"), end=at(MONDAY, "16:00"))
        assert moved.status == BookingStatus.CONFIRMED
        assert moved.reschedule.reason == "Rescheduled via calendar"
        assert moved.reschedule.rescheduled_by == RescheduledBy.USER
        assert moved.reschedule.rescheduled_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_reschedule_overlapping_own_interval(self, lifecycle):
        booking = await create(lifecycle, "14:00")
        moved = await lifecycle.reschedule(
            PROVIDER_ID,
            booking.id,
            at(MONDAY, "14:30"),
            reason="Customer running late",
            rescheduled_by=RescheduledBy.CUSTOMER,
        )
        assert moved.interval.start == at(MONDAY, "14:30")
        assert moved.reschedule.reason == "Customer running late"

    @pytest.mark.asyncio
    async def test_reschedule_conflict_leaves_booking_untouched(self, lifecycle, store):
        booking = await create(lifecycle, "10:00")
        blocker = await create(lifecycle, "14:00", customer_id=NEW_CUSTOMER_ID)

        with pytest.raises(ConflictError) as exc_info:
            await lifecycle.reschedule(PROVIDER_ID, booking.id, at(MONDAY, "13:30"))

        assert [c.id for c in exc_info.value.conflicts] == [blocker.id]
        stored = await store.get(booking.id)
        assert stored.interval == booking.interval
        assert stored.original_interval is None
        assert stored.reschedule is None

    @pytest.mark.asyncio
    async def test_terminal_bookings_cannot_move(self, lifecycle):
        booking = await create(lifecycle, "10:00")
        await lifecycle.cancel(PROVIDER_ID, booking.id)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.reschedule(PROVIDER_ID, booking.id, at(MONDAY, "11:00"))

    @pytest.mark.asyncio
    async def test_offset_aware_start_rejected(self, lifecycle, store):
        booking = await create(lifecycle, "10:00")
        aware = at(MONDAY, "15:00").replace(tzinfo=timezone.utc)

        with pytest.raises(BookingValidationError) as exc_info:
            await lifecycle.reschedule(PROVIDER_ID, booking.id, aware)

        assert exc_info.value.field == "new_start"
        assert (await store.get(booking.id)).interval == booking.interval


class TestDryRunAndSnapshots:
    @pytest.mark.asyncio
    async def test_check_conflicts_is_idempotent_and_writes_nothing(self, lifecycle, store):
        existing = await create(lifecycle, "10:00")
        before = dict(store.bookings)

        first = await lifecycle.check_conflicts(PROVIDER_ID, MONDAY, "10:30", 60)
        second = await lifecycle.check_conflicts(PROVIDER_ID, MONDAY, "10:30", 60)

        assert first == second
        assert first.has_conflicts is True
        assert first.conflicts[0].id == existing.id
        assert store.bookings == before

    @pytest.mark.asyncio
    async def test_check_conflicts_excluding_booking(self, lifecycle):
        existing = await create(lifecycle, "10:00")
        result = await lifecycle.check_conflicts(
            PROVIDER_ID, MONDAY, "10:30", 60, exclude_booking_id=existing.id
        )
        assert result.has_conflicts is False
        assert result.conflicts == []

    @pytest.mark.asyncio
    async def test_refresh_conflict_snapshot(self, lifecycle, store):
        # Legacy data written before conflict checks were enforced
        first = make_booking(MONDAY, "10:00", booking_id="legacy-1")
        second = make_booking(MONDAY, "10:30", booking_id="legacy-2")
        await store.save(first)
        await store.save(second)

        refreshed = await lifecycle.refresh_conflict_snapshot(PROVIDER_ID, "legacy-1")

        assert refreshed.has_conflicts is True
        assert refreshed.conflicts_with == ["legacy-2"]
        assert (await store.get("legacy-1")).has_conflicts is True

    @pytest.mark.asyncio
    async def test_calendar_view_excludes_cancelled(self, lifecycle):
        kept = await create(lifecycle, "09:00")
        dropped = await create(lifecycle, "11:00")
        await lifecycle.cancel(PROVIDER_ID, dropped.id)

        bookings = await lifecycle.calendar_view(
            PROVIDER_ID, at(MONDAY, "00:00"), at(MONDAY, "23:59")
        )
        assert [b.id for b in bookings] == [kept.id]

    @pytest.mark.asyncio
    async def test_check_conflicts_rejects_short_duration(self, lifecycle):
        with pytest.raises(BookingValidationError) as exc_info:
            await lifecycle.check_conflicts(PROVIDER_ID, MONDAY, "10:00", 10)
        assert exc_info.value.field == "duration"
        assert exc_info.value.message == "Duration must be at least 15 minutes"

    @pytest.mark.asyncio
    async def test_calendar_view_rejects_inverted_range(self, lifecycle):
        with pytest.raises(BookingValidationError):
            await lifecycle.calendar_view(PROVIDER_ID, at(MONDAY, "12:00"), at(MONDAY, "08:00"))

    @pytest.mark.asyncio
    async def test_calendar_view_rejects_offset_aware_bounds(self, lifecycle):
        await create(lifecycle, "10:00")
        start = at(MONDAY, "00:00").replace(tzinfo=timezone.utc)

        with pytest.raises(BookingValidationError) as exc_info:
            await lifecycle.calendar_view(PROVIDER_ID, start, at(MONDAY, "23:59"))
        assert exc_info.value.field == "start"


class TestNotifications:
    @pytest.mark.asyncio
    async def test_state_changes_reach_sink(self, directory, store):
        events = []

        async def sink(event):
            events.append((event.action, event.status))

        manager = BookingLifecycleManager(
            directory, store, on_state_change=sink, clock=lambda: FIXED_NOW
        )
        booking = await manager.create(PROVIDER_ID, CUSTOMER_ID, SERVICE_ID, MONDAY, "10:00")
        await manager.update_status(PROVIDER_ID, booking.id, BookingStatus.CONFIRMED)
        await manager.reschedule(PROVIDER_ID, booking.id, at(MONDAY, "12:00"))
        await manager.cancel(PROVIDER_ID, booking.id)

        assert events == [
            ("created", BookingStatus.PENDING),
            ("status_changed", BookingStatus.CONFIRMED),
            ("rescheduled", BookingStatus.CONFIRMED),
            ("cancelled", BookingStatus.CANCELLED),
        ]

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_undo_write(self, directory, store):
        async def broken_sink(event):
            raise RuntimeError("queue unavailable")

        manager = BookingLifecycleManager(
            directory, store, on_state_change=broken_sink, clock=lambda: FIXED_NOW
        )
        booking = await manager.create(PROVIDER_ID, CUSTOMER_ID, SERVICE_ID, MONDAY, "10:00")
        assert (await store.get(booking.id)) is not None

    @pytest.mark.asyncio
    async def test_failing_stats_projection_does_not_fail_booking(self, directory, store):
        async def broken_increment(customer_id, booking_date):
            raise RuntimeError("directory down")

        directory.increment_customer_stats = broken_increment
        manager = BookingLifecycleManager(directory, store, clock=lambda: FIXED_NOW)

        booking = await manager.create(PROVIDER_ID, CUSTOMER_ID, SERVICE_ID, MONDAY, "10:00")
        assert booking.status == BookingStatus.PENDING


class YieldingStore(BookingStore):
    """Store that yields to the event loop on reads, like a real database."""

    async def list_range(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().list_range(*args, **kwargs)

    async def save(self, booking):
        await asyncio.sleep(0)
        return await super().save(booking)


class TestConcurrency:
    """Test per-provider serialisation of conflict-check-then-write."""

    @pytest.mark.asyncio
    async def test_concurrent_creates_admit_one(self, directory):
        store = YieldingStore()
        manager = BookingLifecycleManager(directory, store, clock=lambda: FIXED_NOW)

        results = await asyncio.gather(
            *[
                manager.create(PROVIDER_ID, CUSTOMER_ID, SERVICE_ID, MONDAY, start)
                for start in ("10:00", "10:00", "10:30", "10:15", "10:00")
            ],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, ConflictError) for f in failures)
        await assert_calendar_consistent(store)

    @pytest.mark.asyncio
    async def test_concurrent_reschedules_into_same_slot(self, directory):
        store = YieldingStore()
        manager = BookingLifecycleManager(directory, store, clock=lambda: FIXED_NOW)
        first = await manager.create(PROVIDER_ID, CUSTOMER_ID, SERVICE_ID, MONDAY, "09:00")
        second = await manager.create(PROVIDER_ID, NEW_CUSTOMER_ID, SERVICE_ID, MONDAY, "15:00")

        results = await asyncio.gather(
            manager.reschedule(PROVIDER_ID, first.id, at(MONDAY, "12:00")),
            manager.reschedule(PROVIDER_ID, second.id, at(MONDAY, "12:30")),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
        await assert_calendar_consistent(store)

    @pytest.mark.asyncio
    async def test_invariant_holds_across_mixed_operations(self, lifecycle, store):
        operations = ["09:00", "09:30", "10:00", "11:00", "10:30", "13:00", "13:00", "16:00"]
        created = []
        for start in operations:
            try:
                created.append(await create(lifecycle, start))
            except ConflictError:
                pass
            await assert_calendar_consistent(store)

        await lifecycle.cancel(PROVIDER_ID, created[0].id)
        await assert_calendar_consistent(store)

        for booking, target in zip(created[1:], ["09:00", "14:00", "13:30"]):
            try:
                await lifecycle.reschedule(PROVIDER_ID, booking.id, at(MONDAY, target))
            except ConflictError:
                pass
            await assert_calendar_consistent(store)
