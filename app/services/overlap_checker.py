# app/services/overlap_checker.py
"""
Interval overlap checker.
Two half-open windows [s1, e1) and [s2, e2) overlap iff s1 < e2 and s2 < e1,
so back-to-back bookings (one ends exactly when the next starts) never clash.
Read-only: an empty ConflictSet is the common, valid answer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from app.models.booking import Booking
    from app.models.maintenance_block import MaintenanceBlock
    from app.repositories.base import BookingRepository


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


@dataclass
class ConflictSet:
    vehicle_id: str
    start_at: datetime
    end_at: datetime
    bookings: list = field(default_factory=list)
    maintenance_blocks: list = field(default_factory=list)

    @property
    def has_booking_conflicts(self) -> bool:
        return bool(self.bookings)

    @property
    def has_maintenance_conflicts(self) -> bool:
        return bool(self.maintenance_blocks)

    @property
    def has_conflicts(self) -> bool:
        return self.has_booking_conflicts or self.has_maintenance_conflicts

    @property
    def conflict_count(self) -> int:
        return len(self.bookings)


def find_conflicts(
    repo: "BookingRepository",
    vehicle_id: str,
    start_at: datetime,
    end_at: datetime,
    exclude_booking_id: Optional[str] = None,
    exclude_recurring_booking_id: Optional[str] = None,
    include_maintenance: bool = True,
) -> ConflictSet:
    """Collect active bookings and maintenance blocks intersecting [start_at, end_at)."""
    bookings = repo.find_overlapping(
        vehicle_id, start_at, end_at,
        exclude_booking_id=exclude_booking_id,
        exclude_recurring_booking_id=exclude_recurring_booking_id,
    )
    # The repository filters already; re-checking here keeps the half-open rule authoritative
    bookings = [b for b in bookings if overlaps(b.start_at, b.end_at, start_at, end_at)]
    blocks = repo.find_maintenance_blocks(vehicle_id, start_at, end_at) if include_maintenance else []
    return ConflictSet(vehicle_id, start_at, end_at, bookings=bookings, maintenance_blocks=list(blocks))


def is_slot_free(repo: "BookingRepository", vehicle_id: str, start_at: datetime, end_at: datetime,
                 exclude_booking_id: Optional[str] = None,
                 exclude_recurring_booking_id: Optional[str] = None) -> bool:
    """True when no active booking overlaps the window (maintenance not considered)."""
    return not repo.find_overlapping(
        vehicle_id, start_at, end_at,
        exclude_booking_id=exclude_booking_id,
        exclude_recurring_booking_id=exclude_recurring_booking_id,
    )
