# app/services/booking_state_machine.py
"""
Booking lifecycle.

    PendingApproval ──approve──▶ Confirmed ──check-in──▶ InProgress ──check-out──▶ Completed
          ▲   │                      │                        │
          │   └──────────────────────┴── cancel / no-show ────┴──▶ Cancelled | NoShow
          └── emergency pending-mark (from Confirmed or PendingApproval)

Terminal states never change again and never have their window moved.
Rescheduling is a window mutation, not a status change, and is only legal
while the booking is Confirmed or PendingApproval.
"""

from datetime import datetime
from typing import Optional

from app.exceptions import InvalidTransitionError
from app.models.booking import Booking, BookingStatus, TERMINAL_STATUSES
from app.utils.clock import utcnow

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING_APPROVAL: frozenset({
        BookingStatus.CONFIRMED, BookingStatus.PENDING_APPROVAL,
        BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.IN_PROGRESS, BookingStatus.PENDING_APPROVAL,
        BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
    }),
    BookingStatus.IN_PROGRESS: frozenset({
        BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

# States a freshly created booking may start in
INITIAL_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.PENDING_APPROVAL})

RESCHEDULABLE_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.PENDING_APPROVAL})

_NOTE_TIME_FORMAT = "%Y-%m-%d %H:%M:%SZ"


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def append_note(existing: Optional[str], note: str) -> str:
    if not note or not note.strip():
        return existing or ""
    if not existing or not existing.strip():
        return note
    return f"{existing}\n{note}"


def format_instant(value: datetime) -> str:
    return value.strftime(_NOTE_TIME_FORMAT)


def transition(booking: Booking, target: BookingStatus, note: Optional[str] = None,
               now: Optional[datetime] = None) -> Booking:
    if not can_transition(booking.status, target):
        raise InvalidTransitionError(booking.id, booking.status, target)
    booking.status = target
    if note:
        booking.notes = append_note(booking.notes, note)
    booking.updated_at = now or utcnow()
    return booking


def approve(booking: Booking, now: Optional[datetime] = None) -> Booking:
    if booking.status != BookingStatus.PENDING_APPROVAL:
        raise InvalidTransitionError(booking.id, booking.status, BookingStatus.CONFIRMED)
    return transition(booking, BookingStatus.CONFIRMED, now=now)


def cancel(booking: Booking, reason: Optional[str] = None, now: Optional[datetime] = None) -> Booking:
    note = f"[CANCELLED] {reason}" if reason else "[CANCELLED]"
    return transition(booking, BookingStatus.CANCELLED, note=note, now=now)


def auto_cancel_for_emergency(booking: Booking, emergency_start: datetime, emergency_reason: str,
                              now: Optional[datetime] = None) -> Booking:
    note = f"[AUTO-CANCELLED BY EMERGENCY {format_instant(emergency_start)}] {emergency_reason}"
    return transition(booking, BookingStatus.CANCELLED, note=note, now=now)


def mark_pending_for_emergency(booking: Booking, emergency_start: datetime, emergency_reason: str,
                               now: Optional[datetime] = None) -> Booking:
    if booking.status not in RESCHEDULABLE_STATUSES:
        raise InvalidTransitionError(booking.id, booking.status, BookingStatus.PENDING_APPROVAL)
    note = f"[PENDING RESOLUTION DUE TO EMERGENCY {format_instant(emergency_start)}] {emergency_reason}"
    return transition(booking, BookingStatus.PENDING_APPROVAL, note=note, now=now)


def reschedule(booking: Booking, new_start: datetime, new_end: datetime, note: Optional[str] = None,
               now: Optional[datetime] = None) -> Booking:
    """Move the booking's window in place; status is left as it is."""
    if booking.status not in RESCHEDULABLE_STATUSES:
        raise InvalidTransitionError(
            booking.id, booking.status,
            message=f"Booking {booking.id} in status {booking.status.value} cannot be rescheduled",
        )
    if new_end <= new_start:
        raise InvalidTransitionError(
            booking.id, booking.status,
            message=f"Booking {booking.id} cannot be moved to an empty or inverted window",
        )
    booking.start_at = new_start
    booking.end_at = new_end
    if note:
        booking.notes = append_note(booking.notes, note)
    booking.updated_at = now or utcnow()
    return booking
