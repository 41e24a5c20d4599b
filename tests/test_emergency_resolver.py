# tests/test_emergency_resolver.py
"""Unit tests for emergency overrides."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import timedelta
from app.exceptions import (
    ConflictError, EmergencyConflictError, MaintenanceBlockedError, QuotaExceeded, ValidationError,
)
from app.models import BookingPriority, BookingStatus
from app.services.conflict_resolver import BookingRequest
from app.services.emergency_resolver import (
    RESCHEDULE_MAX_ATTEMPTS, create_emergency_booking, find_reschedule_slot, month_bounds,
)
from app.services.event_publisher import EventType
from factories import (
    GROUP_ID, NOW, VEHICLE_ID, at, make_block, make_booking, make_member, make_publisher, make_repos,
    published_types,
)


def emergency_request(start=None, end=None, auto_cancel=False, reason="Hospital run", user_id="user-e"):
    return BookingRequest(
        vehicle_id=VEHICLE_ID,
        group_id=GROUP_ID,
        user_id=user_id,
        start_at=start or at(1, 9),
        end_at=end or at(1, 11),
        is_emergency=True,
        emergency_reason=reason,
        auto_cancel_conflicts=auto_cancel,
    )


class TestEmergencyOverride:
    @pytest.mark.asyncio
    async def test_conflict_is_rescheduled_after_emergency(self):
        existing = make_booking(user_id="user-x", start=at(1, 10), end=at(1, 12))
        bookings, members, _ = make_repos([existing], members=[make_member("user-e", 0.2)])
        publisher = make_publisher()

        booking, resolution = await create_emergency_booking(emergency_request(), bookings, members, publisher, NOW)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.priority == BookingPriority.EMERGENCY
        assert booking.is_emergency
        assert (existing.start_at, existing.end_at) == (at(1, 11), at(1, 13))
        assert existing.status == BookingStatus.CONFIRMED
        assert "[RESCHEDULED due to emergency 2026-11-01 09:00:00Z - 2026-11-01 11:00:00Z]" in existing.notes
        assert len(resolution.rescheduled) == 1
        moved = resolution.rescheduled[0]
        assert (moved.original_start_at, moved.new_start_at) == (at(1, 10), at(1, 11))
        assert resolution.auto_cancelled == []
        assert resolution.pending_resolution == []
        assert published_types(publisher) == [
            EventType.BOOKING_RESCHEDULED, EventType.BOOKING_CREATED, EventType.EMERGENCY_BOOKING_AUDIT,
        ]

    @pytest.mark.asyncio
    async def test_reschedule_preferred_over_auto_cancel(self):
        existing = make_booking(user_id="user-x", start=at(1, 10), end=at(1, 12))
        bookings, members, _ = make_repos([existing])

        _, resolution = await create_emergency_booking(
            emergency_request(start=at(1, 11), end=at(1, 12, 30), auto_cancel=True), bookings, members,
            make_publisher(), NOW,
        )

        # duration of the displaced booking is kept, probe starts at the emergency end
        assert (existing.start_at, existing.end_at) == (at(1, 12, 30), at(1, 14, 30))
        assert existing.status == BookingStatus.CONFIRMED
        assert resolution.auto_cancelled == []

    @pytest.mark.asyncio
    async def test_audit_carries_request_flag_and_conflicts(self):
        existing = make_booking(user_id="user-x", start=at(1, 10), end=at(1, 12))
        no_show = make_booking(user_id="user-z", start=at(1, 9), end=at(1, 10), status=BookingStatus.NO_SHOW)
        bookings, members, _ = make_repos([existing, no_show])
        publisher = make_publisher()

        await create_emergency_booking(
            emergency_request(start=at(1, 9), end=at(1, 11), auto_cancel=True), bookings, members, publisher, NOW,
        )

        event_type, audit = publisher.publish.await_args_list[-1].args
        assert event_type == EventType.EMERGENCY_BOOKING_AUDIT
        # nothing was cancelled, but the caller asked for auto-cancel
        assert audit["auto_cancel_conflicts"] is True
        assert audit["cancelled_booking_ids"] == []
        assert sorted(audit["conflicting_booking_ids"]) == sorted([existing.id, no_show.id])
        assert audit["rescheduled_booking_ids"] == [existing.id]
        assert no_show.status == BookingStatus.NO_SHOW
        assert (no_show.start_at, no_show.end_at) == (at(1, 9), at(1, 10))

    @pytest.mark.asyncio
    async def test_auto_cancel_when_no_slot(self):
        existing = make_booking(user_id="user-x", start=at(1, 10), end=at(1, 12))
        blocker = make_booking(user_id="user-y", start=at(1, 11), end=at(1, 17))
        bookings, members, _ = make_repos([existing, blocker])
        publisher = make_publisher()

        _, resolution = await create_emergency_booking(emergency_request(auto_cancel=True), bookings, members,
                                                       publisher, NOW)

        assert existing.status == BookingStatus.CANCELLED
        assert existing.notes.startswith("[AUTO-CANCELLED BY EMERGENCY 2026-11-01 09:00:00Z] Hospital run")
        assert resolution.auto_cancelled == [existing.id]
        assert EventType.BOOKING_CANCELLED in published_types(publisher)

    @pytest.mark.asyncio
    async def test_no_slot_leaves_conflict_pending(self):
        existing = make_booking(user_id="user-x", start=at(1, 10), end=at(1, 12))
        # Blocks every candidate from 11:00 through the last probe
        blocker = make_booking(user_id="user-y", start=at(1, 11), end=at(1, 17))
        bookings, members, _ = make_repos([existing, blocker])

        _, resolution = await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW)

        assert existing.status == BookingStatus.PENDING_APPROVAL
        assert (existing.start_at, existing.end_at) == (at(1, 10), at(1, 12))
        assert "[PENDING RESOLUTION DUE TO EMERGENCY 2026-11-01 09:00:00Z] Hospital run" in existing.notes
        assert resolution.pending_resolution == [existing.id]
        assert blocker.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_last_probe_attempt_is_used(self):
        existing = make_booking(user_id="user-x", start=at(1, 10), end=at(1, 12))
        blocker = make_booking(user_id="user-y", start=at(1, 11), end=at(1, 16, 30))
        bookings, members, _ = make_repos([existing, blocker])

        _, resolution = await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW)

        # 11:00 + 11 steps of 30 min
        assert existing.start_at == at(1, 16, 30)
        assert resolution.rescheduled[0].new_end_at == at(1, 18, 30)

    @pytest.mark.asyncio
    async def test_conflicts_processed_in_start_order(self):
        first = make_booking(user_id="user-x", start=at(1, 9), end=at(1, 10))
        second = make_booking(user_id="user-y", start=at(1, 10), end=at(1, 11))
        bookings, members, _ = make_repos([second, first])

        await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW)

        assert (first.start_at, first.end_at) == (at(1, 11), at(1, 12))
        assert (second.start_at, second.end_at) == (at(1, 12), at(1, 13))

    @pytest.mark.asyncio
    async def test_existing_emergency_aborts_without_changes(self):
        normal = make_booking(user_id="user-x", start=at(1, 9), end=at(1, 10))
        other_emergency = make_booking(user_id="user-y", start=at(1, 10), end=at(1, 12), is_emergency=True)
        bookings, members, _ = make_repos([normal, other_emergency])
        publisher = make_publisher()

        with pytest.raises(EmergencyConflictError) as exc_info:
            await create_emergency_booking(emergency_request(), bookings, members, publisher, NOW)

        assert exc_info.value.booking_id == other_emergency.id
        assert normal.status == BookingStatus.CONFIRMED
        assert (normal.start_at, normal.end_at) == (at(1, 9), at(1, 10))
        assert len(bookings.bookings) == 2
        assert bookings.commits == 0
        publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_checked_out_vehicle_aborts(self):
        in_use = make_booking(user_id="user-x", status=BookingStatus.IN_PROGRESS)
        bookings, members, _ = make_repos([in_use])

        with pytest.raises(ConflictError):
            await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW)
        assert in_use.status == BookingStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_maintenance_block_rejects(self):
        bookings, members, _ = make_repos(blocks=[make_block(at(1, 8), at(1, 10))])
        with pytest.raises(MaintenanceBlockedError):
            await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW)

    @pytest.mark.asyncio
    async def test_reason_required(self):
        bookings, members, _ = make_repos()
        with pytest.raises(ValidationError):
            await create_emergency_booking(emergency_request(reason="  "), bookings, members, make_publisher(), NOW)


class TestEmergencyQuota:
    @pytest.mark.asyncio
    async def test_quota_exhausted(self):
        used = [
            make_booking(user_id="user-e", start=at(d, 9), end=at(d, 10), is_emergency=True, created_at=NOW)
            for d in (20, 21)
        ]
        bookings, members, _ = make_repos(used)

        with pytest.raises(QuotaExceeded) as exc_info:
            await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW)

        assert exc_info.value.used == 2
        assert exc_info.value.limit == 2

    @pytest.mark.asyncio
    async def test_quota_counts_current_month_only(self):
        last_month = NOW - timedelta(days=5)
        used = [
            make_booking(user_id="user-e", start=at(d, 9), end=at(d, 10), is_emergency=True, created_at=last_month)
            for d in (20, 21)
        ]
        bookings, members, _ = make_repos(used)

        booking, _ = await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW)

        assert booking.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_explicit_limit(self):
        bookings, members, _ = make_repos()
        with pytest.raises(QuotaExceeded):
            await create_emergency_booking(emergency_request(), bookings, members, make_publisher(), NOW,
                                           quota_limit=0)

    def test_month_bounds_wrap_year(self):
        start, end = month_bounds(at(15, 10, month=12))
        assert start == at(1, 0, month=12)
        assert end == at(1, 0, month=1, year=2027)


class TestRescheduleProbe:
    def test_starts_at_now_when_emergency_is_past(self):
        existing = make_booking(start=at(1, 6), end=at(1, 7))
        bookings, _, _ = make_repos([existing])
        slot = find_reschedule_slot(bookings, existing, emergency_end=at(1, 7), now=NOW)
        assert slot == (NOW, NOW + timedelta(hours=1))

    def test_bounded_attempts(self):
        existing = make_booking(start=at(1, 10), end=at(1, 12))
        blocker = make_booking(user_id="user-y", start=at(1, 11), end=at(2, 11))
        bookings, _, _ = make_repos([existing, blocker])
        calls = []
        original = bookings.find_overlapping

        def counting(*args, **kwargs):
            calls.append(args)
            return original(*args, **kwargs)

        bookings.find_overlapping = counting
        assert find_reschedule_slot(bookings, existing, emergency_end=at(1, 11), now=NOW) is None
        assert len(calls) == RESCHEDULE_MAX_ATTEMPTS

    def test_ignores_own_series(self):
        existing = make_booking(start=at(1, 10), end=at(1, 12), recurring_booking_id="series-1")
        sibling = make_booking(start=at(1, 11), end=at(1, 13), recurring_booking_id="series-1")
        bookings, _, _ = make_repos([existing, sibling])
        slot = find_reschedule_slot(bookings, existing, emergency_end=at(1, 11), now=NOW)
        assert slot == (at(1, 11), at(1, 13))

    def test_skips_maintenance(self):
        existing = make_booking(start=at(1, 10), end=at(1, 12))
        bookings, _, _ = make_repos([existing], blocks=[make_block(at(1, 11), at(1, 13))])
        slot = find_reschedule_slot(bookings, existing, emergency_end=at(1, 11), now=NOW)
        assert slot == (at(1, 13), at(1, 15))
