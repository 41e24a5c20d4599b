# app/repositories/base.py
"""
Collaborator interfaces consumed by the booking engine.
The engine only talks to persistence through these; app.repositories.sql
backs them with SQLAlchemy and app.repositories.memory with plain lists.
"""

from datetime import datetime
from typing import Iterable, Optional, Protocol

from app.models.booking import Booking
from app.models.group_member import GroupMember
from app.models.maintenance_block import MaintenanceBlock
from app.models.recurring_booking import RecurringBooking
from app.models.vehicle import Vehicle


class BookingRepository(Protocol):
    def find_overlapping(self, vehicle_id: str, start: datetime, end: datetime,
                         exclude_booking_id: Optional[str] = None,
                         exclude_recurring_booking_id: Optional[str] = None) -> list[Booking]:
        """Active bookings (not Cancelled/Completed) whose window intersects [start, end)."""
        ...

    def find_maintenance_blocks(self, vehicle_id: str, start: datetime, end: datetime) -> list[MaintenanceBlock]:
        """Maintenance blocks (not Cancelled/Completed) whose window intersects [start, end)."""
        ...

    def get(self, booking_id: str) -> Optional[Booking]: ...

    def save(self, booking: Booking) -> None: ...

    def save_all(self, bookings: Iterable[Booking]) -> None: ...

    def count_emergency_bookings(self, user_id: str, created_from: datetime, created_before: datetime) -> int: ...

    def find_pending_approvals(self, vehicle_ids: Iterable[str]) -> list[Booking]: ...

    def find_by_series(self, recurring_booking_id: str) -> list[Booking]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class MembershipLookup(Protocol):
    def get_member(self, user_id: str, vehicle_id: str) -> Optional[GroupMember]:
        """Membership of the user in the group that owns the vehicle, or None."""
        ...

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]: ...


class RecurringRepository(Protocol):
    def get(self, recurring_booking_id: str) -> Optional[RecurringBooking]: ...

    def add(self, recurring: RecurringBooking) -> None: ...

    def save(self, recurring: RecurringBooking) -> None: ...

    def find_active(self, through: datetime) -> list[RecurringBooking]:
        """Series that may need occurrences generated up to `through`."""
        ...

    def advance_watermark(self, recurring_booking_id: str, new_watermark: datetime, run_at: datetime) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
