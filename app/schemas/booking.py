# app/schemas/booking.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from app.models.booking import BookingPriority, BookingStatus
from app.models.maintenance_block import MaintenanceStatus


class BookingCreate(BaseModel):
    vehicle_id: str
    group_id: Optional[str] = None       # defaults to the vehicle's owning group
    start_at: datetime
    end_at: datetime
    purpose: Optional[str] = None
    notes: Optional[str] = None
    is_emergency: bool = False
    emergency_reason: Optional[str] = None
    auto_cancel_conflicts: bool = False


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class BookingOut(BaseModel):
    id: str
    vehicle_id: str
    group_id: str
    user_id: str
    start_at: datetime
    end_at: datetime
    purpose: Optional[str]
    notes: Optional[str]
    is_emergency: bool
    emergency_reason: Optional[str]
    priority: BookingPriority
    priority_score: int
    status: BookingStatus
    recurring_booking_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MaintenanceBlockOut(BaseModel):
    id: str
    vehicle_id: str
    service_type: str
    start_at: datetime
    end_at: datetime
    status: MaintenanceStatus
    notes: Optional[str]

    class Config:
        from_attributes = True


class RescheduledOut(BaseModel):
    booking_id: str
    user_id: str
    original_start_at: datetime
    original_end_at: datetime
    new_start_at: datetime
    new_end_at: datetime


class EmergencyResolutionOut(BaseModel):
    rescheduled: list[RescheduledOut] = []
    auto_cancelled: list[str] = []
    pending_resolution: list[str] = []


class BookingCreatedOut(BaseModel):
    booking: BookingOut
    requires_approval: bool
    emergency_resolution: Optional[EmergencyResolutionOut] = None


class ConflictCheckOut(BaseModel):
    vehicle_id: str
    start_at: datetime
    end_at: datetime
    has_conflicts: bool
    conflict_count: int
    conflicting_bookings: list[BookingOut]
    maintenance_blocks: list[MaintenanceBlockOut]


class PriorityQueueEntryOut(BaseModel):
    booking_id: str
    user_id: str
    start_at: datetime
    end_at: datetime
    status: BookingStatus
    priority: BookingPriority
    is_emergency: bool
    ranking_score: int
    ownership_percentage: float
