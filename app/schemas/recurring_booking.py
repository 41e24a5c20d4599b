# app/schemas/recurring_booking.py
from pydantic import BaseModel
from datetime import date, datetime, time
from typing import Optional

from app.models.recurring_booking import RecurrencePattern, RecurringBookingStatus


class RecurringBookingCreate(BaseModel):
    vehicle_id: str
    pattern: RecurrencePattern
    interval: int = 1
    days_of_week: Optional[list[int]] = None     # 0 = Sunday … 6 = Saturday, weekly only
    start_time: time
    end_time: time
    recurrence_start_date: date
    recurrence_end_date: Optional[date] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None


class RecurringBookingUpdate(BaseModel):
    pattern: Optional[RecurrencePattern] = None
    interval: Optional[int] = None
    days_of_week: Optional[list[int]] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    recurrence_end_date: Optional[date] = None
    status: Optional[RecurringBookingStatus] = None
    paused_until_utc: Optional[datetime] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None


class RecurringBookingCancel(BaseModel):
    reason: Optional[str] = None


class RecurringBookingOut(BaseModel):
    id: str
    vehicle_id: str
    group_id: str
    user_id: str
    pattern: RecurrencePattern
    interval: int
    days_of_week: list[int]
    start_time: time
    end_time: time
    recurrence_start_date: date
    recurrence_end_date: Optional[date]
    status: RecurringBookingStatus
    paused_until_utc: Optional[datetime]
    last_generated_until_utc: Optional[datetime]
    last_generation_run_at_utc: Optional[datetime]
    purpose: Optional[str]
    notes: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_at_utc: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RecurringBookingResult(BaseModel):
    series: RecurringBookingOut
    bookings_created: int
    conflicts_skipped: int
    bookings_cancelled: int = 0


class GenerationSummaryOut(BaseModel):
    run_at: datetime
    series_processed: int
    series_skipped: int
    bookings_created: int
    gaps: int
    failed_series_ids: list[str]
    stopped_early: bool
