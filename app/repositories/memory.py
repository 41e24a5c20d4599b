# app/repositories/memory.py
"""
In-memory repositories.
Used by the test-suite and for running the engine without a database
(e.g. what-if scheduling in scripts). Objects are stored by reference, so
in-place mutations made by the services are visible immediately.
"""

from datetime import datetime
from typing import Iterable, Optional

from app.models.booking import Booking, BookingStatus
from app.models.group_member import GroupMember
from app.models.maintenance_block import MaintenanceBlock, INACTIVE_MAINTENANCE_STATUSES
from app.models.recurring_booking import RecurringBooking, RecurringBookingStatus
from app.models.vehicle import Vehicle
from app.services.overlap_checker import overlaps


class InMemoryBookingRepository:
    def __init__(self, bookings: Optional[Iterable[Booking]] = None,
                 maintenance_blocks: Optional[Iterable[MaintenanceBlock]] = None):
        self.bookings: list[Booking] = list(bookings or [])
        self.maintenance_blocks: list[MaintenanceBlock] = list(maintenance_blocks or [])
        self.commits = 0
        self.rollbacks = 0

    def find_overlapping(self, vehicle_id, start, end, exclude_booking_id=None, exclude_recurring_booking_id=None):
        return [
            b for b in self.bookings
            if b.vehicle_id == vehicle_id
            and b.is_active
            and overlaps(b.start_at, b.end_at, start, end)
            and (exclude_booking_id is None or b.id != exclude_booking_id)
            and (exclude_recurring_booking_id is None or b.recurring_booking_id != exclude_recurring_booking_id)
        ]

    def find_maintenance_blocks(self, vehicle_id, start, end):
        return [
            m for m in self.maintenance_blocks
            if m.vehicle_id == vehicle_id
            and m.status not in INACTIVE_MAINTENANCE_STATUSES
            and overlaps(m.start_at, m.end_at, start, end)
        ]

    def get(self, booking_id):
        return next((b for b in self.bookings if b.id == booking_id), None)

    def save(self, booking):
        if all(b is not booking for b in self.bookings):
            self.bookings.append(booking)

    def save_all(self, bookings):
        for booking in bookings:
            self.save(booking)

    def count_emergency_bookings(self, user_id, created_from: datetime, created_before: datetime) -> int:
        return sum(
            1 for b in self.bookings
            if b.user_id == user_id and b.is_emergency and created_from <= b.created_at < created_before
        )

    def find_pending_approvals(self, vehicle_ids):
        ids = set(vehicle_ids)
        pending = [b for b in self.bookings if b.vehicle_id in ids and b.status == BookingStatus.PENDING_APPROVAL]
        return sorted(pending, key=lambda b: b.start_at)

    def find_by_series(self, recurring_booking_id):
        generated = [b for b in self.bookings if b.recurring_booking_id == recurring_booking_id]
        return sorted(generated, key=lambda b: b.start_at)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class InMemoryMembershipLookup:
    def __init__(self, vehicles: Optional[Iterable[Vehicle]] = None,
                 members: Optional[Iterable[GroupMember]] = None):
        self.vehicles = {v.id: v for v in (vehicles or [])}
        self.members: list[GroupMember] = list(members or [])

    def get_vehicle(self, vehicle_id):
        return self.vehicles.get(vehicle_id)

    def get_member(self, user_id, vehicle_id):
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            return None
        return next(
            (m for m in self.members if m.group_id == vehicle.group_id and m.user_id == user_id),
            None,
        )


class InMemoryRecurringRepository:
    def __init__(self, series: Optional[Iterable[RecurringBooking]] = None):
        self.series = {s.id: s for s in (series or [])}
        self.commits = 0
        self.rollbacks = 0

    def get(self, recurring_booking_id):
        return self.series.get(recurring_booking_id)

    def add(self, recurring):
        self.series[recurring.id] = recurring

    def save(self, recurring):
        self.series[recurring.id] = recurring

    def find_active(self, through):
        return [
            s for s in self.series.values()
            if s.status in (RecurringBookingStatus.ACTIVE, RecurringBookingStatus.PAUSED)
            and s.recurrence_start_date <= through.date()
        ]

    def advance_watermark(self, recurring_booking_id, new_watermark, run_at):
        recurring = self.series[recurring_booking_id]
        if recurring.last_generated_until_utc is None or new_watermark > recurring.last_generated_until_utc:
            recurring.last_generated_until_utc = new_watermark
        recurring.last_generation_run_at_utc = run_at
        recurring.updated_at = run_at

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1
