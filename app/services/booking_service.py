# app/services/booking_service.py
"""
Booking operations exposed to the API.
Routes a creation request to the normal or the emergency path while holding
the vehicle lock, and covers approval, cancellation and the read-only
reports (conflict check, priority queue, pending approvals).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from app.exceptions import NotFoundError, ValidationError
from app.models.booking import Booking, BookingStatus
from app.repositories.base import BookingRepository, MembershipLookup
from app.services import booking_state_machine
from app.services.conflict_resolver import BookingRequest, create_booking
from app.services.emergency_resolver import EmergencyResolution, create_emergency_booking
from app.services.event_publisher import EventPublisher, EventType, booking_payload
from app.services.overlap_checker import ConflictSet, find_conflicts
from app.services.priority_scorer import PriorityQueueEntry, build_priority_queue
from app.utils.clock import to_utc_naive, utcnow
from app.utils.locks import KeyedLocks, vehicle_locks
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class BookingResult:
    booking: Booking
    emergency_resolution: Optional[EmergencyResolution] = None

    @property
    def requires_approval(self) -> bool:
        return self.booking.status == BookingStatus.PENDING_APPROVAL


class BookingService:
    def __init__(self, bookings: BookingRepository, members: MembershipLookup, publisher: EventPublisher,
                 locks: KeyedLocks = vehicle_locks):
        self.bookings = bookings
        self.members = members
        self.publisher = publisher
        self.locks = locks

    async def create_booking(self, request: BookingRequest, now: Optional[datetime] = None) -> BookingResult:
        vehicle = self.members.get_vehicle(request.vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle", request.vehicle_id)
        if not request.group_id:
            request.group_id = vehicle.group_id
        elif request.group_id != vehicle.group_id:
            raise ValidationError(f"Vehicle {vehicle.id} does not belong to group {request.group_id}")

        async with self.locks.hold(request.vehicle_id):
            if request.is_emergency:
                booking, resolution = await create_emergency_booking(
                    request, self.bookings, self.members, self.publisher, now,
                )
                return BookingResult(booking, resolution)
            booking = await create_booking(request, self.bookings, self.members, self.publisher, now)
            return BookingResult(booking)

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    async def approve_booking(self, booking_id: str, approver_id: str, now: Optional[datetime] = None) -> Booking:
        now = now or utcnow()
        booking = self.get_booking(booking_id)
        async with self.locks.hold(booking.vehicle_id):
            booking_state_machine.approve(booking, now)
            self.bookings.save(booking)
            self.bookings.commit()
        logger.info(f"[BOOKING] {booking.id} approved by {approver_id}")
        await self.publisher.publish(EventType.BOOKING_APPROVED, booking_payload(booking, approved_by=approver_id))
        return booking

    async def cancel_booking(self, booking_id: str, cancelled_by: str, reason: Optional[str] = None,
                             now: Optional[datetime] = None) -> Booking:
        now = now or utcnow()
        booking = self.get_booking(booking_id)
        async with self.locks.hold(booking.vehicle_id):
            booking_state_machine.cancel(booking, reason, now)
            self.bookings.save(booking)
            self.bookings.commit()
        logger.info(f"[BOOKING] {booking.id} cancelled by {cancelled_by}")
        await self.publisher.publish(EventType.BOOKING_CANCELLED, booking_payload(
            booking, cancelled_by=cancelled_by, reason=reason,
        ))
        return booking

    def check_conflicts(self, vehicle_id: str, start_at: datetime, end_at: datetime,
                        exclude_booking_id: Optional[str] = None) -> ConflictSet:
        start_at, end_at = _window(start_at, end_at)
        return find_conflicts(self.bookings, vehicle_id, start_at, end_at, exclude_booking_id=exclude_booking_id)

    def get_priority_queue(self, vehicle_id: str, start_at: datetime, end_at: datetime,
                           now: Optional[datetime] = None) -> list[PriorityQueueEntry]:
        start_at, end_at = _window(start_at, end_at)
        active = self.bookings.find_overlapping(vehicle_id, start_at, end_at)
        return build_priority_queue(active, self.members, now)

    def get_pending_approvals(self, vehicle_ids: Iterable[str]) -> list[Booking]:
        return self.bookings.find_pending_approvals(vehicle_ids)


def _window(start_at: datetime, end_at: datetime) -> tuple[datetime, datetime]:
    start_at, end_at = to_utc_naive(start_at), to_utc_naive(end_at)
    if end_at <= start_at:
        raise ValidationError("end_at must be after start_at")
    return start_at, end_at
