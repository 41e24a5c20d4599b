# app/routers/bookings.py
"""Bookings: create (normal or emergency), approve, cancel, conflict and priority reports."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_booking_service, get_current_user_id
from app.schemas.booking import (
    BookingCancel, BookingCreate, BookingCreatedOut, BookingOut, ConflictCheckOut,
    EmergencyResolutionOut, MaintenanceBlockOut, PriorityQueueEntryOut, RescheduledOut,
)
from app.services.booking_service import BookingService
from app.services.conflict_resolver import BookingRequest

router = APIRouter()


@router.post("/bookings", response_model=BookingCreatedOut, status_code=201, summary="Create a booking")
async def create_booking(
    body: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """
    Normal bookings are Confirmed when the slot is free, PendingApproval when
    they clash with an equal-or-higher priority booking, and rejected (409)
    otherwise. Emergency bookings override conflicts by rescheduling or
    cancelling them.
    """
    request = BookingRequest(
        vehicle_id=body.vehicle_id,
        group_id=body.group_id,
        user_id=user_id,
        start_at=body.start_at,
        end_at=body.end_at,
        purpose=body.purpose,
        notes=body.notes,
        is_emergency=body.is_emergency,
        emergency_reason=body.emergency_reason,
        auto_cancel_conflicts=body.auto_cancel_conflicts,
    )
    result = await service.create_booking(request)

    resolution = None
    if result.emergency_resolution is not None:
        resolution = EmergencyResolutionOut(
            rescheduled=[RescheduledOut(**vars(r)) for r in result.emergency_resolution.rescheduled],
            auto_cancelled=result.emergency_resolution.auto_cancelled,
            pending_resolution=result.emergency_resolution.pending_resolution,
        )
    return BookingCreatedOut(
        booking=BookingOut.model_validate(result.booking),
        requires_approval=result.requires_approval,
        emergency_resolution=resolution,
    )


@router.get("/bookings/conflicts", response_model=ConflictCheckOut, summary="Check a window for conflicts")
def check_conflicts(
    vehicle_id: str,
    start_at: datetime,
    end_at: datetime,
    exclude_booking_id: str = None,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    conflicts = service.check_conflicts(vehicle_id, start_at, end_at, exclude_booking_id)
    return ConflictCheckOut(
        vehicle_id=vehicle_id,
        start_at=conflicts.start_at,
        end_at=conflicts.end_at,
        has_conflicts=conflicts.has_conflicts,
        conflict_count=conflicts.conflict_count,
        conflicting_bookings=[BookingOut.model_validate(b) for b in conflicts.bookings],
        maintenance_blocks=[MaintenanceBlockOut.model_validate(m) for m in conflicts.maintenance_blocks],
    )


@router.get("/bookings/priority-queue", response_model=list[PriorityQueueEntryOut],
            summary="Active bookings in a window, highest ranking first")
def priority_queue(
    vehicle_id: str,
    start_at: datetime,
    end_at: datetime,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return [
        PriorityQueueEntryOut(
            booking_id=e.booking.id,
            user_id=e.booking.user_id,
            start_at=e.booking.start_at,
            end_at=e.booking.end_at,
            status=e.booking.status,
            priority=e.booking.priority,
            is_emergency=bool(e.booking.is_emergency),
            ranking_score=e.ranking_score,
            ownership_percentage=e.ownership_percentage,
        )
        for e in service.get_priority_queue(vehicle_id, start_at, end_at)
    ]


@router.get("/bookings/pending-approvals", response_model=list[BookingOut], summary="Bookings awaiting approval")
def pending_approvals(
    vehicle_ids: list[str] = Query(...),
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_pending_approvals(vehicle_ids)


@router.post("/bookings/{booking_id}/approve", response_model=BookingOut, summary="Approve a pending booking")
async def approve_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return await service.approve_booking(booking_id, user_id)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut, summary="Cancel a booking")
async def cancel_booking(
    booking_id: str,
    body: BookingCancel = None,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    reason = body.reason if body else None
    return await service.cancel_booking(booking_id, user_id, reason)
