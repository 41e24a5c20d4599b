# app/services/emergency_resolver.py
"""
Emergency override.

An emergency booking is always admitted (quota and maintenance permitting).
Every active booking it overlaps is handled, in start-time order, as one of:

  a free slot is found later      → Rescheduled in place (same duration)
  no slot, auto_cancel_conflicts  → Cancelled, with an audit note
  no slot otherwise               → moved to PendingApproval for an admin

Before anything is touched all conflicts are checked once: another emergency
booking or a vehicle already checked out aborts the request with no changes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Union

from app.config import settings
from app.exceptions import ConflictError, EmergencyConflictError, MaintenanceBlockedError, QuotaExceeded
from app.models.booking import Booking, BookingPriority, BookingStatus
from app.repositories.base import BookingRepository, MembershipLookup
from app.services import booking_state_machine
from app.services.conflict_resolver import BookingRequest, maintenance_message, new_booking, validate_request
from app.services.event_publisher import EventPublisher, EventType, booking_payload
from app.services.overlap_checker import find_conflicts
from app.services.priority_scorer import calculate_user_priority
from app.utils.clock import utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)

RESCHEDULE_MAX_ATTEMPTS = 12
RESCHEDULE_STEP = timedelta(minutes=30)


@dataclass(frozen=True)
class Rescheduled:
    booking_id: str
    user_id: str
    original_start_at: datetime
    original_end_at: datetime
    new_start_at: datetime
    new_end_at: datetime


@dataclass(frozen=True)
class AutoCancelled:
    booking_id: str
    user_id: str


@dataclass(frozen=True)
class PendingResolution:
    booking_id: str
    user_id: str


ConflictOutcome = Union[Rescheduled, AutoCancelled, PendingResolution]


@dataclass
class EmergencyResolution:
    outcomes: list = field(default_factory=list)

    @property
    def rescheduled(self) -> list[Rescheduled]:
        return [o for o in self.outcomes if isinstance(o, Rescheduled)]

    @property
    def auto_cancelled(self) -> list[str]:
        return [o.booking_id for o in self.outcomes if isinstance(o, AutoCancelled)]

    @property
    def pending_resolution(self) -> list[str]:
        return [o.booking_id for o in self.outcomes if isinstance(o, PendingResolution)]

    @property
    def affected_user_ids(self) -> list[str]:
        return sorted({o.user_id for o in self.outcomes})


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def check_emergency_quota(bookings: BookingRepository, user_id: str, now: datetime,
                          limit: Optional[int] = None):
    limit = settings.MAX_EMERGENCY_BOOKINGS_PER_MONTH if limit is None else limit
    month_start, month_end = month_bounds(now)
    used = bookings.count_emergency_bookings(user_id, month_start, month_end)
    if used >= limit:
        logger.warning(f"[EMERGENCY] User {user_id} hit the monthly emergency limit ({used}/{limit})")
        raise QuotaExceeded(user_id, limit, used)
    return used


def find_reschedule_slot(bookings: BookingRepository, booking: Booking, emergency_end: datetime,
                         now: datetime) -> Optional[tuple[datetime, datetime]]:
    """
    Probe forward from max(emergency_end, now) in RESCHEDULE_STEP increments,
    at most RESCHEDULE_MAX_ATTEMPTS candidates, for a window of the same length
    that no other active booking (nor maintenance block) touches.
    The booking itself and the rest of its recurring series are ignored.
    """
    duration = booking.end_at - booking.start_at
    if duration <= timedelta(0):
        return None

    candidate_start = max(emergency_end, now)
    for _ in range(RESCHEDULE_MAX_ATTEMPTS):
        candidate_end = candidate_start + duration
        conflicts = find_conflicts(
            bookings, booking.vehicle_id, candidate_start, candidate_end,
            exclude_booking_id=booking.id,
            exclude_recurring_booking_id=booking.recurring_booking_id,
        )
        if not conflicts.has_conflicts:
            return candidate_start, candidate_end
        candidate_start += RESCHEDULE_STEP
    return None


def _precheck(conflicts: list[Booking]):
    for existing in conflicts:
        if existing.status == BookingStatus.NO_SHOW:
            # terminal; left in place next to the emergency booking
            continue
        if existing.is_emergency:
            raise EmergencyConflictError(
                "Cannot override existing emergency booking. Please contact admin.",
                booking_id=existing.id,
            )
        if existing.status == BookingStatus.IN_PROGRESS:
            raise ConflictError(
                f"Vehicle is checked out under booking {existing.id}; emergency cannot override it",
                [existing],
            )


def resolve_conflicts(bookings: BookingRepository, request: BookingRequest, conflicts: list[Booking],
                      now: datetime) -> EmergencyResolution:
    """Apply the override to every conflicting booking. Mutations are saved, not committed."""
    ordered = sorted(
        (c for c in conflicts if c.status in booking_state_machine.RESCHEDULABLE_STATUSES),
        key=lambda c: (c.start_at, c.created_at),
    )
    _precheck(conflicts)

    resolution = EmergencyResolution()
    for existing in ordered:
        slot = find_reschedule_slot(bookings, existing, request.end_at, now)
        if slot is not None:
            original_start, original_end = existing.start_at, existing.end_at
            new_start, new_end = slot
            note = (f"[RESCHEDULED due to emergency "
                    f"{booking_state_machine.format_instant(request.start_at)} - "
                    f"{booking_state_machine.format_instant(request.end_at)}]")
            booking_state_machine.reschedule(existing, new_start, new_end, note=note, now=now)
            resolution.outcomes.append(Rescheduled(
                existing.id, existing.user_id, original_start, original_end, new_start, new_end,
            ))
            logger.info(f"[EMERGENCY] Rescheduled booking {existing.id} to "
                        f"{new_start:%Y-%m-%d %H:%M}-{new_end:%H:%M}")
        elif request.auto_cancel_conflicts:
            booking_state_machine.auto_cancel_for_emergency(existing, request.start_at, request.emergency_reason, now)
            resolution.outcomes.append(AutoCancelled(existing.id, existing.user_id))
            logger.info(f"[EMERGENCY] No free slot for booking {existing.id}; auto-cancelled")
        else:
            booking_state_machine.mark_pending_for_emergency(existing, request.start_at, request.emergency_reason, now)
            resolution.outcomes.append(PendingResolution(existing.id, existing.user_id))
            logger.info(f"[EMERGENCY] No free slot for booking {existing.id}; left pending resolution")
        bookings.save(existing)
    return resolution


async def create_emergency_booking(request: BookingRequest, bookings: BookingRepository, members: MembershipLookup,
                                   publisher: EventPublisher, now: Optional[datetime] = None,
                                   quota_limit: Optional[int] = None) -> tuple[Booking, EmergencyResolution]:
    now = now or utcnow()
    request.is_emergency = True
    validate_request(request)
    check_emergency_quota(bookings, request.user_id, now, quota_limit)

    conflicts = find_conflicts(bookings, request.vehicle_id, request.start_at, request.end_at)
    if conflicts.has_maintenance_conflicts:
        raise MaintenanceBlockedError(maintenance_message(conflicts.maintenance_blocks), conflicts.maintenance_blocks)

    try:
        resolution = resolve_conflicts(bookings, request, conflicts.bookings, now)
        score = calculate_user_priority(members, request.user_id, request.vehicle_id)
        booking = new_booking(request, BookingStatus.CONFIRMED, BookingPriority.EMERGENCY, score, now)
        bookings.save(booking)
        bookings.commit()
    except Exception:
        bookings.rollback()
        raise

    logger.warning(
        f"[EMERGENCY] {booking.id} confirmed for vehicle {booking.vehicle_id} by {booking.user_id}: "
        f"{len(resolution.rescheduled)} rescheduled, {len(resolution.auto_cancelled)} cancelled, "
        f"{len(resolution.pending_resolution)} pending"
    )
    await _publish_resolution(publisher, bookings, booking, resolution,
                              [c.id for c in conflicts.bookings], request.auto_cancel_conflicts)
    return booking, resolution


async def _publish_resolution(publisher: EventPublisher, bookings: BookingRepository, booking: Booking,
                              resolution: EmergencyResolution, conflicting_booking_ids: list[str],
                              auto_cancel_conflicts: bool):
    for outcome in resolution.outcomes:
        affected = bookings.get(outcome.booking_id)
        if affected is None:
            continue
        if isinstance(outcome, Rescheduled):
            await publisher.publish(EventType.BOOKING_RESCHEDULED, booking_payload(
                affected,
                original_start_at=outcome.original_start_at.isoformat(),
                original_end_at=outcome.original_end_at.isoformat(),
                emergency_booking_id=booking.id,
            ))
        elif isinstance(outcome, AutoCancelled):
            await publisher.publish(EventType.BOOKING_CANCELLED, booking_payload(
                affected, reason=booking.emergency_reason, emergency_booking_id=booking.id,
            ))
        else:
            await publisher.publish(EventType.BOOKING_PENDING_APPROVAL, booking_payload(
                affected, reason=booking.emergency_reason, emergency_booking_id=booking.id,
            ))

    await publisher.publish(EventType.BOOKING_CREATED, booking_payload(booking))
    await publisher.publish(EventType.EMERGENCY_BOOKING_AUDIT, booking_payload(
        booking,
        emergency_reason=booking.emergency_reason,
        auto_cancel_conflicts=auto_cancel_conflicts,
        conflicting_booking_ids=conflicting_booking_ids,
        rescheduled_booking_ids=[o.booking_id for o in resolution.rescheduled],
        cancelled_booking_ids=resolution.auto_cancelled,
        pending_resolution_booking_ids=resolution.pending_resolution,
        affected_user_ids=resolution.affected_user_ids,
    ))
