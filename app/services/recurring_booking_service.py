# app/services/recurring_booking_service.py
"""
Recurring series management: create, update, cancel, read.
Every mutation re-runs the expander (or cancels future occurrences) inside
the vehicle lock and commits once.
"""

from datetime import datetime, timedelta
from typing import Optional

from app.config import settings
from app.exceptions import NotFoundError, ValidationError
from app.models.booking import Booking
from app.models.recurring_booking import RecurringBooking, RecurringBookingStatus
from app.repositories.base import BookingRepository, MembershipLookup, RecurringRepository
from app.schemas.recurring_booking import RecurringBookingCreate, RecurringBookingUpdate
from app.services import booking_state_machine
from app.services.event_publisher import EventPublisher, EventType, booking_payload
from app.services.recurrence_expander import (
    SERIES_UPDATE_REASON, SeriesExpansion, build_occurrences, expand_series, generation_window, mask_from_days,
    publish_expansion, validate_template,
)
from app.utils.clock import new_id, utcnow
from app.utils.locks import KeyedLocks, vehicle_locks
from app.utils.logger import get_logger

logger = get_logger(__name__)


def series_payload(series: RecurringBooking, **extra) -> dict:
    payload = {
        "recurring_booking_id": series.id,
        "vehicle_id": series.vehicle_id,
        "group_id": series.group_id,
        "user_id": series.user_id,
        "pattern": series.pattern.value,
        "interval": series.interval,
        "days_of_week": series.days_of_week,
        "status": series.status.value,
    }
    payload.update(extra)
    return payload


class RecurringBookingService:
    def __init__(self, bookings: BookingRepository, members: MembershipLookup, recurring: RecurringRepository,
                 publisher: EventPublisher, locks: KeyedLocks = vehicle_locks,
                 horizon: Optional[timedelta] = None):
        self.bookings = bookings
        self.members = members
        self.recurring = recurring
        self.publisher = publisher
        self.locks = locks
        self.horizon = horizon if horizon is not None else timedelta(days=settings.RECURRENCE_HORIZON_DAYS)

    def get_series(self, recurring_booking_id: str) -> RecurringBooking:
        series = self.recurring.get(recurring_booking_id)
        if series is None:
            raise NotFoundError("Recurring booking", recurring_booking_id)
        return series

    async def create_series(self, body: RecurringBookingCreate, user_id: str,
                            now: Optional[datetime] = None) -> tuple[RecurringBooking, SeriesExpansion]:
        now = now or utcnow()
        if not user_id:
            raise ValidationError("user_id is required")
        vehicle = self.members.get_vehicle(body.vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle", body.vehicle_id)

        series = RecurringBooking(
            id=new_id(),
            vehicle_id=body.vehicle_id,
            group_id=vehicle.group_id,
            user_id=user_id,
            pattern=body.pattern,
            interval=body.interval,
            days_of_week_mask=mask_from_days(body.days_of_week or []) or None,
            start_time=body.start_time,
            end_time=body.end_time,
            recurrence_start_date=body.recurrence_start_date,
            recurrence_end_date=body.recurrence_end_date,
            status=RecurringBookingStatus.ACTIVE,
            paused_until_utc=None,
            last_generated_until_utc=None,
            last_generation_run_at_utc=None,
            purpose=body.purpose,
            notes=body.notes,
            cancellation_reason=None,
            cancelled_at_utc=None,
            created_at=now,
            updated_at=now,
        )
        validate_template(series)

        async with self.locks.hold(series.vehicle_id):
            try:
                self.recurring.add(series)
                expansion = expand_series(series, self.bookings, self.members, self.recurring, now, self.horizon)
                self.recurring.commit()
            except Exception:
                self.recurring.rollback()
                raise

        logger.info(f"[RECURRING] Series {series.id} created ({series.pattern.value}/{series.interval}) "
                    f"for vehicle {series.vehicle_id}: {len(expansion.created)} bookings, "
                    f"{len(expansion.gaps)} conflicting occurrence(s) skipped")
        await self.publisher.publish(EventType.RECURRING_BOOKING_CREATED, series_payload(
            series, booking_ids=[b.id for b in expansion.created], conflicts_skipped=len(expansion.gaps),
        ))
        await publish_expansion(self.publisher, series, expansion)
        return series, expansion

    async def update_series(self, recurring_booking_id: str, body: RecurringBookingUpdate,
                            now: Optional[datetime] = None) -> tuple[RecurringBooking, SeriesExpansion, list[Booking]]:
        """
        Apply template changes, cancel future generated bookings that no longer
        match the template, then regenerate from now (ignoring the watermark).
        Matching occurrences are kept as they are.
        """
        now = now or utcnow()
        series = self.get_series(recurring_booking_id)
        if series.status == RecurringBookingStatus.ENDED:
            raise ValidationError(f"Recurring booking {series.id} has ended and cannot be updated")
        if body.status == RecurringBookingStatus.ENDED:
            raise ValidationError("Use cancel to end a recurring booking")

        async with self.locks.hold(series.vehicle_id):
            try:
                self._apply_changes(series, body, now)
                validate_template(series)
                cancelled = self._cancel_unmatched_occurrences(series, now)
                expansion = expand_series(series, self.bookings, self.members, self.recurring,
                                          now, self.horizon, ignore_watermark=True)
                self.recurring.save(series)
                self.recurring.commit()
            except Exception:
                self.recurring.rollback()
                raise

        logger.info(f"[RECURRING] Series {series.id} updated: {len(cancelled)} future bookings cancelled, "
                    f"{len(expansion.created)} created")
        for booking in cancelled:
            await self.publisher.publish(EventType.BOOKING_CANCELLED, booking_payload(
                booking, reason=SERIES_UPDATE_REASON,
            ))
        await self.publisher.publish(EventType.RECURRING_BOOKING_UPDATED, series_payload(
            series, bookings_created=len(expansion.created), bookings_cancelled=len(cancelled),
        ))
        await publish_expansion(self.publisher, series, expansion)
        return series, expansion, cancelled

    async def cancel_series(self, recurring_booking_id: str, reason: Optional[str] = None,
                            now: Optional[datetime] = None) -> tuple[RecurringBooking, list[Booking]]:
        now = now or utcnow()
        series = self.get_series(recurring_booking_id)
        if series.status == RecurringBookingStatus.ENDED:
            return series, []

        note = f"Cancelled with recurring series: {reason}" if reason else "Cancelled with recurring series"
        async with self.locks.hold(series.vehicle_id):
            try:
                cancelled = []
                for booking in self._future_generated(series, now):
                    booking_state_machine.cancel(booking, note, now)
                    cancelled.append(booking)
                self.bookings.save_all(cancelled)
                series.status = RecurringBookingStatus.ENDED
                series.cancellation_reason = reason
                series.cancelled_at_utc = now
                series.updated_at = now
                self.recurring.save(series)
                self.recurring.commit()
            except Exception:
                self.recurring.rollback()
                raise

        logger.info(f"[RECURRING] Series {series.id} ended; {len(cancelled)} future bookings cancelled")
        for booking in cancelled:
            await self.publisher.publish(EventType.BOOKING_CANCELLED, booking_payload(booking, reason=note))
        await self.publisher.publish(EventType.RECURRING_BOOKING_CANCELLED, series_payload(
            series, reason=reason, bookings_cancelled=len(cancelled),
        ))
        return series, cancelled

    # ─── internals ────────────────────────────────────────────────────────

    def _future_generated(self, series: RecurringBooking, now: datetime) -> list[Booking]:
        return [
            b for b in self.bookings.find_by_series(series.id)
            if b.start_at >= now and not booking_state_machine.is_terminal(b.status)
        ]

    def _cancel_unmatched_occurrences(self, series: RecurringBooking, now: datetime) -> list[Booking]:
        window_start, window_through = generation_window(series, now, self.horizon, ignore_watermark=True)
        wanted = {(o.start_at, o.end_at) for o in build_occurrences(series, window_start, window_through)}
        cancelled = []
        for booking in self._future_generated(series, now):
            if (booking.start_at, booking.end_at) not in wanted:
                booking_state_machine.cancel(booking, SERIES_UPDATE_REASON, now)
                cancelled.append(booking)
        self.bookings.save_all(cancelled)
        return cancelled

    @staticmethod
    def _apply_changes(series: RecurringBooking, body: RecurringBookingUpdate, now: datetime):
        changes = body.model_dump(exclude_unset=True)
        if "days_of_week" in changes:
            series.days_of_week_mask = mask_from_days(changes.pop("days_of_week") or []) or None
        if changes.get("status") == RecurringBookingStatus.ACTIVE:
            changes.setdefault("paused_until_utc", None)
        for key, value in changes.items():
            if key in ("pattern", "interval", "start_time", "end_time", "status") and value is None:
                continue
            setattr(series, key, value)
        series.updated_at = now
