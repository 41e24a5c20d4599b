# app/repositories/sql.py
"""SQLAlchemy-backed repositories. One instance per DB session."""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus, INACTIVE_STATUSES
from app.models.group_member import GroupMember
from app.models.maintenance_block import MaintenanceBlock, INACTIVE_MAINTENANCE_STATUSES
from app.models.recurring_booking import RecurringBooking, RecurringBookingStatus
from app.models.vehicle import Vehicle
from app.utils.logger import get_logger

logger = get_logger(__name__)


class SqlBookingRepository:
    def __init__(self, db: Session, lock_rows: bool = True):
        self.db = db
        # SELECT ... FOR UPDATE is ignored by SQLite but serialises check+insert on PostgreSQL
        self.lock_rows = lock_rows and db.bind is not None and db.bind.dialect.name != "sqlite"

    def find_overlapping(self, vehicle_id, start, end, exclude_booking_id=None, exclude_recurring_booking_id=None):
        if self.lock_rows:
            # An empty window locks no booking rows; the vehicle row serialises writers across workers
            self.db.query(Vehicle).filter(Vehicle.id == vehicle_id).with_for_update().first()
        q = self.db.query(Booking).filter(
            Booking.vehicle_id == vehicle_id,
            Booking.status.notin_(list(INACTIVE_STATUSES)),
            Booking.start_at < end,
            Booking.end_at > start,
        )
        if exclude_booking_id:
            q = q.filter(Booking.id != exclude_booking_id)
        if exclude_recurring_booking_id:
            q = q.filter((Booking.recurring_booking_id == None) |  # noqa: E711
                         (Booking.recurring_booking_id != exclude_recurring_booking_id))
        if self.lock_rows:
            q = q.with_for_update()
        return q.order_by(Booking.start_at, Booking.created_at).all()

    def find_maintenance_blocks(self, vehicle_id, start, end):
        return (
            self.db.query(MaintenanceBlock)
            .filter(
                MaintenanceBlock.vehicle_id == vehicle_id,
                MaintenanceBlock.status.notin_(list(INACTIVE_MAINTENANCE_STATUSES)),
                MaintenanceBlock.start_at < end,
                MaintenanceBlock.end_at > start,
            )
            .order_by(MaintenanceBlock.start_at)
            .all()
        )

    def get(self, booking_id: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def save(self, booking: Booking):
        self.db.add(booking)
        self.db.flush()

    def save_all(self, bookings: Iterable[Booking]):
        self.db.add_all(list(bookings))
        self.db.flush()

    def count_emergency_bookings(self, user_id, created_from: datetime, created_before: datetime) -> int:
        return (
            self.db.query(func.count(Booking.id))
            .filter(
                Booking.user_id == user_id,
                Booking.is_emergency == True,  # noqa: E712
                Booking.created_at >= created_from,
                Booking.created_at < created_before,
            )
            .scalar()
        ) or 0

    def find_pending_approvals(self, vehicle_ids):
        ids = list(vehicle_ids)
        if not ids:
            return []
        return (
            self.db.query(Booking)
            .filter(Booking.vehicle_id.in_(ids), Booking.status == BookingStatus.PENDING_APPROVAL)
            .order_by(Booking.start_at)
            .all()
        )

    def find_by_series(self, recurring_booking_id):
        return (
            self.db.query(Booking)
            .filter(Booking.recurring_booking_id == recurring_booking_id)
            .order_by(Booking.start_at)
            .all()
        )

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()


class SqlMembershipLookup:
    def __init__(self, db: Session):
        self.db = db

    def get_vehicle(self, vehicle_id):
        return self.db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()

    def get_member(self, user_id, vehicle_id):
        return (
            self.db.query(GroupMember)
            .join(Vehicle, Vehicle.group_id == GroupMember.group_id)
            .filter(Vehicle.id == vehicle_id, GroupMember.user_id == user_id)
            .first()
        )


class SqlRecurringRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, recurring_booking_id):
        return self.db.query(RecurringBooking).filter(RecurringBooking.id == recurring_booking_id).first()

    def add(self, recurring: RecurringBooking):
        self.db.add(recurring)
        self.db.flush()

    def save(self, recurring: RecurringBooking):
        self.db.add(recurring)
        self.db.flush()

    def find_active(self, through: datetime):
        return (
            self.db.query(RecurringBooking)
            .filter(
                RecurringBooking.status.in_([RecurringBookingStatus.ACTIVE, RecurringBookingStatus.PAUSED]),
                RecurringBooking.recurrence_start_date <= through.date(),
            )
            .order_by(RecurringBooking.created_at)
            .all()
        )

    def advance_watermark(self, recurring_booking_id, new_watermark, run_at):
        recurring = self.get(recurring_booking_id)
        if recurring is None:
            logger.warning(f"[RECURRING] Watermark update for unknown series {recurring_booking_id}")
            return
        if recurring.last_generated_until_utc is None or new_watermark > recurring.last_generated_until_utc:
            recurring.last_generated_until_utc = new_watermark
        recurring.last_generation_run_at_utc = run_at
        recurring.updated_at = run_at
        self.db.flush()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
