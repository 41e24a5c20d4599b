# app/routers/recurring_bookings.py
"""Recurring booking series: create, update, cancel, read, and a manual generation run."""

from fastapi import APIRouter, Depends

from app.dependencies import get_current_user_id, get_recurring_service
from app.schemas.recurring_booking import (
    GenerationSummaryOut, RecurringBookingCancel, RecurringBookingCreate, RecurringBookingOut,
    RecurringBookingResult, RecurringBookingUpdate,
)
from app.services.recurrence_expander import generate_all
from app.services.recurring_booking_service import RecurringBookingService

router = APIRouter()


@router.post("/recurring-bookings", response_model=RecurringBookingResult, status_code=201,
             summary="Create a recurring booking series")
async def create_series(
    body: RecurringBookingCreate,
    user_id: str = Depends(get_current_user_id),
    service: RecurringBookingService = Depends(get_recurring_service),
):
    series, expansion = await service.create_series(body, user_id)
    return RecurringBookingResult(
        series=RecurringBookingOut.model_validate(series),
        bookings_created=len(expansion.created),
        conflicts_skipped=len(expansion.gaps),
    )


@router.post("/recurring-bookings/generate", response_model=GenerationSummaryOut,
             summary="Run occurrence generation for every active series now")
async def generate_now(
    user_id: str = Depends(get_current_user_id),
    service: RecurringBookingService = Depends(get_recurring_service),
):
    summary = await generate_all(service.bookings, service.members, service.recurring, service.publisher,
                                 horizon=service.horizon)
    return summary.as_dict()


@router.get("/recurring-bookings/{recurring_booking_id}", response_model=RecurringBookingOut,
            summary="Get a recurring booking series")
def get_series(
    recurring_booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RecurringBookingService = Depends(get_recurring_service),
):
    return service.get_series(recurring_booking_id)


@router.patch("/recurring-bookings/{recurring_booking_id}", response_model=RecurringBookingResult,
              summary="Update a recurring booking series")
async def update_series(
    recurring_booking_id: str,
    body: RecurringBookingUpdate,
    user_id: str = Depends(get_current_user_id),
    service: RecurringBookingService = Depends(get_recurring_service),
):
    series, expansion, cancelled = await service.update_series(recurring_booking_id, body)
    return RecurringBookingResult(
        series=RecurringBookingOut.model_validate(series),
        bookings_created=len(expansion.created),
        conflicts_skipped=len(expansion.gaps),
        bookings_cancelled=len(cancelled),
    )


@router.post("/recurring-bookings/{recurring_booking_id}/cancel", response_model=RecurringBookingResult,
             summary="End a recurring series and cancel its future bookings")
async def cancel_series(
    recurring_booking_id: str,
    body: RecurringBookingCancel = None,
    user_id: str = Depends(get_current_user_id),
    service: RecurringBookingService = Depends(get_recurring_service),
):
    series, cancelled = await service.cancel_series(recurring_booking_id, body.reason if body else None)
    return RecurringBookingResult(
        series=RecurringBookingOut.model_validate(series),
        bookings_created=0,
        conflicts_skipped=0,
        bookings_cancelled=len(cancelled),
    )
