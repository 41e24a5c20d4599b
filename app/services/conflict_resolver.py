# app/services/conflict_resolver.py
"""
Admission decision for normal (non-emergency) bookings.

  no conflicts                               → Confirmed
  some conflict has priority ≥ requester's   → PendingApproval (an admin decides)
  requester strictly outranks every conflict → rejected with ConflictError

Outranking never displaces anyone on the normal path; only an emergency
booking can move or cancel other reservations.
A window touching an active maintenance block is rejected before any of this.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.exceptions import ConflictError, MaintenanceBlockedError, ValidationError
from app.models.booking import Booking, BookingPriority, BookingStatus
from app.repositories.base import BookingRepository, MembershipLookup
from app.services.event_publisher import EventPublisher, EventType, booking_payload
from app.services.overlap_checker import find_conflicts
from app.services.priority_scorer import calculate_user_priority, map_priority_score_to_enum
from app.utils.clock import new_id, to_utc_naive, utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class BookingRequest:
    vehicle_id: str
    group_id: str
    user_id: str
    start_at: datetime
    end_at: datetime
    purpose: Optional[str] = None
    notes: Optional[str] = None
    is_emergency: bool = False
    emergency_reason: Optional[str] = None
    auto_cancel_conflicts: bool = False

    def __post_init__(self):
        if isinstance(self.start_at, datetime):
            self.start_at = to_utc_naive(self.start_at)
        if isinstance(self.end_at, datetime):
            self.end_at = to_utc_naive(self.end_at)


def validate_request(request: BookingRequest):
    if not request.vehicle_id or not str(request.vehicle_id).strip():
        raise ValidationError("vehicle_id is required")
    if not request.group_id or not str(request.group_id).strip():
        raise ValidationError("group_id is required")
    if not request.user_id or not str(request.user_id).strip():
        raise ValidationError("user_id is required")
    if request.start_at is None or request.end_at is None:
        raise ValidationError("start_at and end_at are required")
    if request.end_at <= request.start_at:
        raise ValidationError("end_at must be after start_at")
    if request.is_emergency and not (request.emergency_reason or "").strip():
        raise ValidationError("Emergency reason is required for emergency bookings")


def new_booking(request: BookingRequest, status: BookingStatus, priority: BookingPriority,
                priority_score: int, now: datetime, recurring_booking_id: Optional[str] = None) -> Booking:
    return Booking(
        id=new_id(),
        vehicle_id=request.vehicle_id,
        group_id=request.group_id,
        user_id=request.user_id,
        start_at=request.start_at,
        end_at=request.end_at,
        purpose=request.purpose,
        notes=request.notes,
        is_emergency=request.is_emergency,
        emergency_reason=request.emergency_reason if request.is_emergency else None,
        priority=priority,
        priority_score=priority_score,
        status=status,
        recurring_booking_id=recurring_booking_id,
        created_at=now,
        updated_at=now,
    )


def maintenance_message(blocks) -> str:
    block = blocks[0]
    return (f"Cannot create booking: vehicle is scheduled for maintenance ({block.service_type}) "
            f"from {block.start_at:%Y-%m-%d %H:%M} to {block.end_at:%Y-%m-%d %H:%M}")


async def create_booking(request: BookingRequest, bookings: BookingRepository, members: MembershipLookup,
                         publisher: EventPublisher, now: Optional[datetime] = None) -> Booking:
    """Run the admission decision and persist the booking (Confirmed or PendingApproval)."""
    now = now or utcnow()
    if request.is_emergency:
        raise ValidationError("Emergency bookings go through the emergency override path")
    validate_request(request)

    conflicts = find_conflicts(bookings, request.vehicle_id, request.start_at, request.end_at)
    if conflicts.has_maintenance_conflicts:
        logger.info(f"[BOOKING] Vehicle {request.vehicle_id} under maintenance for "
                    f"{request.start_at:%Y-%m-%d %H:%M}; request by {request.user_id} rejected")
        raise MaintenanceBlockedError(maintenance_message(conflicts.maintenance_blocks), conflicts.maintenance_blocks)

    score = calculate_user_priority(members, request.user_id, request.vehicle_id)
    priority = map_priority_score_to_enum(score)

    if not conflicts.has_booking_conflicts:
        booking = new_booking(request, BookingStatus.CONFIRMED, priority, score, now)
        bookings.save(booking)
        bookings.commit()
        logger.info(f"[BOOKING] {booking.id} confirmed for vehicle {booking.vehicle_id} "
                    f"by {booking.user_id} ({priority.name}, score={score})")
        await publisher.publish(EventType.BOOKING_CREATED, booking_payload(booking))
        return booking

    requires_approval = any(c.priority >= priority for c in conflicts.bookings)
    if not requires_approval:
        logger.info(f"[BOOKING] Request by {request.user_id} outranks {conflicts.conflict_count} "
                    f"conflicting booking(s) on vehicle {request.vehicle_id}: rejected")
        raise ConflictError(
            f"Booking conflicts detected with {conflicts.conflict_count} existing bookings",
            conflicts.bookings,
        )

    booking = new_booking(request, BookingStatus.PENDING_APPROVAL, priority, score, now)
    bookings.save(booking)
    bookings.commit()
    logger.info(f"[BOOKING] {booking.id} pending approval: {conflicts.conflict_count} conflict(s) "
                f"with equal or higher priority on vehicle {booking.vehicle_id}")
    await publisher.publish(
        EventType.BOOKING_PENDING_APPROVAL,
        booking_payload(booking, conflict_count=conflicts.conflict_count,
                        conflicting_booking_ids=[c.id for c in conflicts.bookings]),
    )
    return booking
