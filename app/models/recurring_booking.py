# app/models/recurring_booking.py
"""
Recurring booking templates (daily / weekly / monthly series).
last_generated_until_utc is the generation watermark: it only moves forward
and is advanced by the recurrence expander together with the bookings it stages.
"""

import enum
from sqlalchemy import Column, String, DateTime, Date, Time, Text, Integer, Enum
from app.database import Base


class RecurrencePattern(str, enum.Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class RecurringBookingStatus(str, enum.Enum):
    ACTIVE = "Active"
    PAUSED = "Paused"
    ENDED = "Ended"


class RecurringBooking(Base):
    __tablename__ = "recurring_bookings"

    id = Column(String(36), primary_key=True)
    vehicle_id = Column(String(36), nullable=False, index=True)
    group_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    pattern = Column(Enum(RecurrencePattern, name="recurrence_pattern"), nullable=False)
    interval = Column(Integer, nullable=False, default=1)
    days_of_week_mask = Column(Integer)       # bit 0 = Sunday … bit 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    recurrence_start_date = Column(Date, nullable=False)
    recurrence_end_date = Column(Date)
    status = Column(Enum(RecurringBookingStatus, name="recurring_booking_status"), nullable=False, index=True)
    paused_until_utc = Column(DateTime)
    last_generated_until_utc = Column(DateTime)
    last_generation_run_at_utc = Column(DateTime)
    purpose = Column(String(200))
    notes = Column(Text)
    cancellation_reason = Column(Text)
    cancelled_at_utc = Column(DateTime)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return (f"<RecurringBooking {self.id} {self.pattern.value}/{self.interval} "
                f"status={self.status.value} watermark={self.last_generated_until_utc}>")

    @property
    def days_of_week(self) -> list[int]:
        return [d for d in range(7) if (self.days_of_week_mask or 0) & (1 << d)]
