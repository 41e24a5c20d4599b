# app/services/recurrence_expander.py
"""
Recurrence expander.
Turns a recurring template into concrete bookings over a rolling horizon.

Occurrences are anchored on recurrence_start_date (day 0, week of day 0,
month of day 0), so a run that starts mid-series lands on the same dates a
run from the beginning would. Each generation window is

    [max(watermark + 1 min, first occurrence, now), min(now + horizon, series end)]

Occurrences already represented by a generated booking (any status) are
skipped, which makes re-running idempotent. Occurrences that collide with a
foreign booking or a maintenance block are left as gaps and reported.
"""

import asyncio
import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterator, Optional

from app.config import settings
from app.exceptions import ValidationError
from app.models.booking import Booking, BookingStatus
from app.models.recurring_booking import RecurrencePattern, RecurringBooking, RecurringBookingStatus
from app.repositories.base import BookingRepository, MembershipLookup, RecurringRepository
from app.services.event_publisher import EventPublisher, EventType, booking_payload
from app.services.overlap_checker import find_conflicts
from app.services.priority_scorer import calculate_user_priority, map_priority_score_to_enum
from app.utils.clock import new_id, utcnow
from app.utils.locks import KeyedLocks, vehicle_locks
from app.utils.logger import get_logger

logger = get_logger(__name__)

WATERMARK_STEP = timedelta(minutes=1)
ALL_DAYS_MASK = 0b1111111
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

# Cancellation reason for occurrences dropped by a template change; such
# bookings no longer claim their slot, so a later change may restore it
SERIES_UPDATE_REASON = "Recurring series updated"


@dataclass(frozen=True)
class Occurrence:
    start_at: datetime
    end_at: datetime


@dataclass
class SeriesExpansion:
    recurring_booking_id: str
    created: list = field(default_factory=list)
    gaps: list = field(default_factory=list)
    already_represented: int = 0
    skipped_reason: Optional[str] = None
    watermark: Optional[datetime] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


# ─── Days-of-week mask (bit 0 = Sunday … bit 6 = Saturday) ─────────────────

def sunday_index(day: date) -> int:
    # date.weekday() is Monday=0
    return (day.weekday() + 1) % 7


def mask_from_days(days) -> int:
    mask = 0
    for d in days:
        if not 0 <= int(d) <= 6:
            raise ValidationError(f"Day of week {d} out of range 0 (Sunday) .. 6 (Saturday)")
        mask |= 1 << int(d)
    return mask


def start_of_week(day: date) -> date:
    return day - timedelta(days=sunday_index(day))


def add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


# ─── Template validation ──────────────────────────────────────────────────

def validate_template(series: RecurringBooking):
    if series.interval is None or series.interval < 1:
        raise ValidationError("Recurrence interval must be at least 1")
    if series.start_time is None or series.end_time is None:
        raise ValidationError("start_time and end_time are required")
    if series.end_time <= series.start_time:
        raise ValidationError("end_time must be after start_time")
    if series.recurrence_start_date is None:
        raise ValidationError("recurrence_start_date is required")
    if series.recurrence_end_date is not None and series.recurrence_end_date < series.recurrence_start_date:
        raise ValidationError("recurrence_end_date cannot be before recurrence_start_date")
    if series.pattern == RecurrencePattern.WEEKLY and not ((series.days_of_week_mask or 0) & ALL_DAYS_MASK):
        raise ValidationError("Weekly recurrences need at least one day of week")


# ─── Date iteration per pattern ───────────────────────────────────────────

def _daily_dates(series: RecurringBooking, first: date, last: date) -> Iterator[date]:
    anchor = series.recurrence_start_date
    step = series.interval
    offset = max(0, (first - anchor).days)
    k = -(-offset // step)  # ceil
    day = anchor + timedelta(days=k * step)
    while day <= last:
        yield day
        day += timedelta(days=step)


def _weekly_dates(series: RecurringBooking, first: date, last: date) -> Iterator[date]:
    anchor = series.recurrence_start_date
    anchor_week = start_of_week(anchor)
    weeks_ahead = max(0, (start_of_week(first) - anchor_week).days // 7)
    week = anchor_week + timedelta(weeks=(weeks_ahead // series.interval) * series.interval)
    days = series.days_of_week
    while week <= last:
        for d in days:
            day = week + timedelta(days=d)
            if anchor <= day <= last:
                yield day
        week += timedelta(weeks=series.interval)


def _monthly_dates(series: RecurringBooking, first: date, last: date) -> Iterator[date]:
    anchor = series.recurrence_start_date
    months_ahead = max(0, (first.year - anchor.year) * 12 + first.month - anchor.month)
    k = (months_ahead // series.interval) * series.interval
    while True:
        year, month = add_months(anchor.year, anchor.month, k)
        if date(year, month, 1) > last:
            return
        # 31st in a 30-day month lands on the 30th, Feb on the 28th/29th
        day = date(year, month, min(anchor.day, calendar.monthrange(year, month)[1]))
        if anchor <= day <= last:
            yield day
        k += series.interval


_DATE_ITERATORS = {
    RecurrencePattern.DAILY: _daily_dates,
    RecurrencePattern.WEEKLY: _weekly_dates,
    RecurrencePattern.MONTHLY: _monthly_dates,
}


def build_occurrences(series: RecurringBooking, generation_start: datetime,
                      generation_through: datetime) -> list[Occurrence]:
    """Occurrences whose start falls in [generation_start, generation_through], in order."""
    validate_template(series)
    if generation_through < generation_start:
        return []
    occurrences = []
    for day in _DATE_ITERATORS[series.pattern](series, generation_start.date(), generation_through.date()):
        start = datetime.combine(day, series.start_time)
        end = datetime.combine(day, series.end_time)
        if generation_start <= start <= generation_through:
            occurrences.append(Occurrence(start, end))
    return occurrences


def series_end_instant(series: RecurringBooking) -> Optional[datetime]:
    if series.recurrence_end_date is None:
        return None
    return datetime.combine(series.recurrence_end_date, series.end_time)


def generation_window(series: RecurringBooking, now: datetime, horizon: timedelta,
                      ignore_watermark: bool = False) -> tuple[datetime, datetime]:
    first = datetime.combine(series.recurrence_start_date, series.start_time)
    if series.last_generated_until_utc is not None and not ignore_watermark:
        first = max(first, series.last_generated_until_utc + WATERMARK_STEP)
    start = max(first, now)
    through = now + horizon
    series_end = series_end_instant(series)
    if series_end is not None:
        through = min(through, series_end)
    return start, through


def pause_state(series: RecurringBooking, now: datetime) -> Optional[str]:
    """Reason to skip a paused series, or None once it may generate again."""
    if series.status != RecurringBookingStatus.PAUSED:
        return None
    if series.paused_until_utc is None:
        return "paused"
    if series.paused_until_utc > now:
        return f"paused until {series.paused_until_utc:%Y-%m-%d %H:%M}"
    series.status = RecurringBookingStatus.ACTIVE
    series.paused_until_utc = None
    series.updated_at = now
    logger.info(f"[RECURRING] Series {series.id} pause elapsed; resuming generation")
    return None


def superseded_by_update(booking: Booking) -> bool:
    return (booking.status == BookingStatus.CANCELLED
            and f"[CANCELLED] {SERIES_UPDATE_REASON}" in (booking.notes or ""))


def expand_series(series: RecurringBooking, bookings: BookingRepository, members: MembershipLookup,
                  recurring: RecurringRepository, now: Optional[datetime] = None,
                  horizon: Optional[timedelta] = None, ignore_watermark: bool = False) -> SeriesExpansion:
    """
    Stage and save the missing bookings of one series and advance its watermark.
    Does not commit; the caller owns the transaction.
    """
    now = now or utcnow()
    horizon = horizon if horizon is not None else timedelta(days=settings.RECURRENCE_HORIZON_DAYS)
    expansion = SeriesExpansion(series.id, watermark=series.last_generated_until_utc)

    if series.status == RecurringBookingStatus.ENDED:
        expansion.skipped_reason = "ended"
        return expansion
    paused = pause_state(series, now)
    if paused:
        expansion.skipped_reason = paused
        return expansion

    window_start, window_through = generation_window(series, now, horizon, ignore_watermark)
    occurrences = build_occurrences(series, window_start, window_through)
    if not occurrences:
        return expansion

    represented = {
        (b.start_at, b.end_at) for b in bookings.find_by_series(series.id) if not superseded_by_update(b)
    }
    score = calculate_user_priority(members, series.user_id, series.vehicle_id)
    priority = map_priority_score_to_enum(score)

    for occ in occurrences:
        if (occ.start_at, occ.end_at) in represented:
            expansion.already_represented += 1
            continue
        conflicts = find_conflicts(
            bookings, series.vehicle_id, occ.start_at, occ.end_at,
            exclude_recurring_booking_id=series.id,
        )
        if conflicts.has_conflicts:
            expansion.gaps.append(occ)
            logger.info(f"[RECURRING] Series {series.id}: {occ.start_at:%Y-%m-%d %H:%M} skipped "
                        f"({conflicts.conflict_count} booking / {len(conflicts.maintenance_blocks)} maintenance conflict(s))")
            continue
        expansion.created.append(Booking(
            id=new_id(),
            vehicle_id=series.vehicle_id,
            group_id=series.group_id,
            user_id=series.user_id,
            start_at=occ.start_at,
            end_at=occ.end_at,
            purpose=series.purpose,
            notes=series.notes,
            is_emergency=False,
            emergency_reason=None,
            priority=priority,
            priority_score=score,
            status=BookingStatus.CONFIRMED,
            recurring_booking_id=series.id,
            created_at=now,
            updated_at=now,
        ))

    if expansion.created:
        bookings.save_all(expansion.created)
        new_watermark = max(b.end_at for b in expansion.created)
        recurring.advance_watermark(series.id, new_watermark, now)
    expansion.watermark = series.last_generated_until_utc
    return expansion


# ─── Batch generation ─────────────────────────────────────────────────────

@dataclass
class GenerationSummary:
    run_at: datetime
    series_processed: int = 0
    series_skipped: int = 0
    bookings_created: int = 0
    gaps: int = 0
    failed_series_ids: list = field(default_factory=list)
    stopped_early: bool = False

    def as_dict(self) -> dict:
        return {
            "run_at": self.run_at.isoformat(),
            "series_processed": self.series_processed,
            "series_skipped": self.series_skipped,
            "bookings_created": self.bookings_created,
            "gaps": self.gaps,
            "failed_series_ids": list(self.failed_series_ids),
            "stopped_early": self.stopped_early,
        }


async def publish_expansion(publisher: EventPublisher, series: RecurringBooking, expansion: SeriesExpansion):
    for booking in expansion.created:
        await publisher.publish(EventType.BOOKING_CREATED, booking_payload(booking))
    if expansion.gaps:
        await publisher.publish(EventType.RECURRING_BOOKING_CONFLICT, {
            "recurring_booking_id": series.id,
            "vehicle_id": series.vehicle_id,
            "user_id": series.user_id,
            "conflict_count": len(expansion.gaps),
            # first few are enough for the notification text
            "conflicting_occurrences": [
                {"start_at": o.start_at.isoformat(), "end_at": o.end_at.isoformat()}
                for o in expansion.gaps[:3]
            ],
        })


async def generate_all(bookings: BookingRepository, members: MembershipLookup, recurring: RecurringRepository,
                       publisher: EventPublisher, now: Optional[datetime] = None,
                       horizon: Optional[timedelta] = None, stop_event: Optional[asyncio.Event] = None,
                       locks: KeyedLocks = vehicle_locks) -> GenerationSummary:
    """
    Expand every active (or paused) series. Each series commits on its own;
    a failing series is rolled back, logged and skipped. A set stop_event is
    honoured between series.
    """
    now = now or utcnow()
    horizon = horizon if horizon is not None else timedelta(days=settings.RECURRENCE_HORIZON_DAYS)
    summary = GenerationSummary(run_at=now)

    for series in recurring.find_active(now + horizon):
        if stop_event is not None and stop_event.is_set():
            summary.stopped_early = True
            logger.info("[RECURRING] Stop requested; ending generation run early")
            break

        async with locks.hold(series.vehicle_id):
            try:
                expansion = expand_series(series, bookings, members, recurring, now, horizon)
                recurring.save(series)
                recurring.commit()
            except Exception as e:
                recurring.rollback()
                summary.failed_series_ids.append(series.id)
                logger.error(f"[RECURRING] Generation failed for series {series.id}: {e}", exc_info=True)
                continue

        if expansion.skipped:
            summary.series_skipped += 1
            logger.debug(f"[RECURRING] Series {series.id} skipped: {expansion.skipped_reason}")
            continue

        summary.series_processed += 1
        summary.bookings_created += len(expansion.created)
        summary.gaps += len(expansion.gaps)
        await publish_expansion(publisher, series, expansion)

    logger.info(
        f"[RECURRING] Generation run done: {summary.series_processed} series, "
        f"{summary.bookings_created} bookings created, {summary.gaps} gaps, "
        f"{len(summary.failed_series_ids)} failed"
    )
    return summary
