# tests/test_recurrence_expander.py
"""Unit tests for recurring occurrence generation."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
import pytest
from datetime import date, datetime, time, timedelta
from app.exceptions import ValidationError
from app.models import BookingStatus, RecurrencePattern, RecurringBookingStatus
from app.repositories.memory import InMemoryMembershipLookup
from app.services.event_publisher import EventType
from app.services.recurrence_expander import (
    build_occurrences, expand_series, generate_all, mask_from_days, start_of_week,
)
from factories import at, make_block, make_booking, make_member, make_publisher, make_repos, make_series, make_vehicle

SUNDAY_MIDNIGHT = datetime(2026, 11, 1, 0, 0)
HORIZON = timedelta(days=28)
MON_WED = mask_from_days([1, 3])


class TestDaysOfWeek:
    def test_mask_round_trip(self):
        series = make_series(days_mask=mask_from_days([0, 6]))
        assert series.days_of_week == [0, 6]
        assert MON_WED == 0b0001010

    def test_out_of_range_day(self):
        with pytest.raises(ValidationError):
            mask_from_days([7])

    def test_start_of_week_is_sunday(self):
        assert start_of_week(date(2026, 11, 4)) == date(2026, 11, 1)
        assert start_of_week(date(2026, 11, 1)) == date(2026, 11, 1)


class TestBuildOccurrences:
    def test_daily_interval_anchored_on_start_date(self):
        series = make_series(pattern=RecurrencePattern.DAILY, interval=2, days_mask=None)
        occurrences = build_occurrences(series, at(4, 0), at(9, 23))
        assert [o.start_at.day for o in occurrences] == [5, 7, 9]

    def test_biweekly_anchored_on_start_week(self):
        series = make_series(days_mask=mask_from_days([3]), interval=2, start_date=date(2026, 11, 4))
        occurrences = build_occurrences(series, at(10, 0), at(30, 23))
        assert [o.start_at.date() for o in occurrences] == [date(2026, 11, 18)]

    def test_monthly_clamps_to_month_end(self):
        series = make_series(pattern=RecurrencePattern.MONTHLY, days_mask=None, start_date=date(2027, 1, 31))
        occurrences = build_occurrences(series, datetime(2027, 1, 1), datetime(2027, 5, 1))
        assert [o.start_at.date() for o in occurrences] == [
            date(2027, 1, 31), date(2027, 2, 28), date(2027, 3, 31), date(2027, 4, 30),
        ]

    def test_end_date_respected_by_window(self):
        series = make_series(pattern=RecurrencePattern.DAILY, days_mask=None, end_date=date(2026, 11, 3))
        occurrences = build_occurrences(series, SUNDAY_MIDNIGHT, datetime.combine(date(2026, 11, 3), time(11)))
        assert [o.start_at.day for o in occurrences] == [1, 2, 3]

    def test_occurrence_window_uses_template_times(self):
        series = make_series(pattern=RecurrencePattern.DAILY, days_mask=None)
        first = build_occurrences(series, SUNDAY_MIDNIGHT, at(1, 23))[0]
        assert (first.start_at, first.end_at) == (at(1, 9), at(1, 11))

    @pytest.mark.parametrize("kwargs", [
        {"interval": 0},
        {"days_mask": 0},
        {"start_time": time(11), "end_time": time(9)},
        {"start_date": date(2026, 11, 5), "end_date": date(2026, 11, 4)},
    ])
    def test_invalid_templates(self, kwargs):
        with pytest.raises(ValidationError):
            build_occurrences(make_series(**kwargs), SUNDAY_MIDNIGHT, at(30, 0))


class TestExpandSeries:
    def test_weekly_series_fills_horizon(self):
        series = make_series(days_mask=MON_WED)
        bookings, members, recurring = make_repos(members=[make_member("user-a", 0.5)], series=[series])

        expansion = expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)

        assert len(expansion.created) == 8
        assert [b.start_at.day for b in expansion.created] == [2, 4, 9, 11, 16, 18, 23, 25]
        assert all(b.status == BookingStatus.CONFIRMED for b in expansion.created)
        assert all(b.recurring_booking_id == series.id for b in expansion.created)
        assert series.last_generated_until_utc == at(25, 11)
        assert expansion.watermark == at(25, 11)

    def test_rerun_is_idempotent(self):
        series = make_series(days_mask=MON_WED)
        bookings, members, recurring = make_repos(series=[series])

        expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)
        again = expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)
        ignoring_watermark = expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON,
                                           ignore_watermark=True)

        assert again.created == []
        assert ignoring_watermark.created == []
        assert ignoring_watermark.already_represented == 8
        assert len(bookings.bookings) == 8

    def test_cancelled_occurrence_is_not_regenerated(self):
        series = make_series(days_mask=MON_WED)
        bookings, members, recurring = make_repos(series=[series])
        expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)
        bookings.bookings[0].status = BookingStatus.CANCELLED

        rerun = expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON, ignore_watermark=True)

        assert rerun.created == []

    def test_conflicting_occurrence_left_as_gap(self):
        foreign = make_booking(user_id="user-b", start=at(9, 9, 30), end=at(9, 10))
        series = make_series(days_mask=MON_WED)
        bookings, members, recurring = make_repos([foreign], blocks=[make_block(at(18, 0), at(18, 23))],
                                                  series=[series])

        expansion = expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)

        assert len(expansion.created) == 6
        assert [g.start_at for g in expansion.gaps] == [at(9, 9), at(18, 9)]

    def test_later_run_continues_after_watermark(self):
        series = make_series(days_mask=MON_WED)
        bookings, members, recurring = make_repos(series=[series])
        expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)

        week_later = SUNDAY_MIDNIGHT + timedelta(days=7)
        expansion = expand_series(series, bookings, members, recurring, week_later, HORIZON)

        assert [b.start_at for b in expansion.created] == [at(30, 9), at(2, 9, month=12)]
        assert series.last_generated_until_utc == at(2, 11, month=12)

    def test_paused_series_skipped(self):
        series = make_series(status=RecurringBookingStatus.PAUSED, paused_until=at(10, 0))
        bookings, members, recurring = make_repos(series=[series])

        expansion = expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)

        assert expansion.skipped
        assert bookings.bookings == []
        assert series.last_generated_until_utc is None

    def test_elapsed_pause_resumes(self):
        series = make_series(status=RecurringBookingStatus.PAUSED, paused_until=at(1, 0) - timedelta(days=1))
        bookings, members, recurring = make_repos(series=[series])

        expansion = expand_series(series, bookings, members, recurring, SUNDAY_MIDNIGHT, HORIZON)

        assert series.status == RecurringBookingStatus.ACTIVE
        assert series.paused_until_utc is None
        assert len(expansion.created) == 8

    def test_past_occurrences_not_generated(self):
        series = make_series(days_mask=MON_WED)
        bookings, members, recurring = make_repos(series=[series])
        wednesday_noon = at(4, 12)

        expansion = expand_series(series, bookings, members, recurring, wednesday_noon, HORIZON)

        assert expansion.created[0].start_at == at(9, 9)


class _BrokenLookup(InMemoryMembershipLookup):
    def get_member(self, user_id, vehicle_id):
        if vehicle_id == "veh-broken":
            raise RuntimeError("membership service down")
        return super().get_member(user_id, vehicle_id)


class TestGenerateAll:
    @pytest.mark.asyncio
    async def test_generates_and_publishes(self):
        foreign = make_booking(user_id="user-b", start=at(9, 9), end=at(9, 11))
        series = make_series(days_mask=MON_WED)
        bookings, members, recurring = make_repos([foreign], series=[series])
        publisher = make_publisher()

        summary = await generate_all(bookings, members, recurring, publisher, SUNDAY_MIDNIGHT, HORIZON)

        assert summary.series_processed == 1
        assert summary.bookings_created == 7
        assert summary.gaps == 1
        assert recurring.commits == 1
        calls = publisher.publish.await_args_list
        assert [c.args[0] for c in calls].count(EventType.BOOKING_CREATED) == 7
        event_type, data = calls[-1].args
        assert event_type == EventType.RECURRING_BOOKING_CONFLICT
        assert data["conflict_count"] == 1
        assert data["conflicting_occurrences"][0]["start_at"] == at(9, 9).isoformat()

    @pytest.mark.asyncio
    async def test_failing_series_does_not_stop_the_run(self):
        broken = make_series(vehicle_id="veh-broken")
        healthy = make_series()
        bookings, _, recurring = make_repos(series=[broken, healthy])
        members = _BrokenLookup([make_vehicle(), make_vehicle("veh-broken")], [])

        summary = await generate_all(bookings, members, recurring, make_publisher(), SUNDAY_MIDNIGHT, HORIZON)

        assert summary.failed_series_ids == [broken.id]
        assert summary.series_processed == 1
        assert recurring.rollbacks == 1
        assert broken.last_generated_until_utc is None
        assert healthy.last_generated_until_utc == at(25, 11)

    @pytest.mark.asyncio
    async def test_stop_event_honoured(self):
        series = make_series()
        bookings, members, recurring = make_repos(series=[series])
        stop = asyncio.Event()
        stop.set()

        summary = await generate_all(bookings, members, recurring, make_publisher(), SUNDAY_MIDNIGHT, HORIZON,
                                     stop_event=stop)

        assert summary.stopped_early
        assert summary.series_processed == 0
        assert bookings.bookings == []

    @pytest.mark.asyncio
    async def test_ended_series_not_picked_up(self):
        series = make_series(status=RecurringBookingStatus.ENDED)
        bookings, members, recurring = make_repos(series=[series])

        summary = await generate_all(bookings, members, recurring, make_publisher(), SUNDAY_MIDNIGHT, HORIZON)

        assert summary.series_processed == 0
        assert bookings.bookings == []
