# app/models/booking.py
"""
Bookings table: one reservation of one vehicle by one user for [start_at, end_at).
Rows are never deleted: cancellation is a status change.
"""

import enum
from sqlalchemy import Column, String, DateTime, Text, Boolean, Integer, Enum, Index
from app.database import Base


class BookingStatus(str, enum.Enum):
    PENDING_APPROVAL = "PendingApproval"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "NoShow"


class BookingPriority(enum.IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    EMERGENCY = 3


# Bookings in these states never block a time window
INACTIVE_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})

TERMINAL_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW})


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("ix_bookings_vehicle_window", "vehicle_id", "start_at", "end_at"),)

    id = Column(String(36), primary_key=True)
    vehicle_id = Column(String(36), nullable=False, index=True)
    group_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    purpose = Column(String(200))
    notes = Column(Text)
    is_emergency = Column(Boolean, nullable=False, default=False)
    emergency_reason = Column(Text)
    priority = Column(Enum(BookingPriority, name="booking_priority"), nullable=False, default=BookingPriority.NORMAL)
    priority_score = Column(Integer, nullable=False, default=0)
    status = Column(Enum(BookingStatus, name="booking_status"), nullable=False, index=True)
    recurring_booking_id = Column(String(36), index=True)   # set for generated occurrences
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    @property
    def duration(self):
        return self.end_at - self.start_at

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def __repr__(self):
        return (f"<Booking {self.id} vehicle={self.vehicle_id} "
                f"{self.start_at:%Y-%m-%d %H:%M}-{self.end_at:%H:%M} status={self.status.value}>")
