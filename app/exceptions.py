# app/exceptions.py
"""
Error taxonomy of the booking engine.
Services raise these; app.main maps them to HTTP responses.
"""


class BookingEngineError(Exception):
    """Base class for every error the engine raises on purpose."""


class ValidationError(BookingEngineError):
    """Malformed input: bad time window, missing ids, bad recurrence template."""


class InvalidTransitionError(ValidationError):
    """A booking status move the state machine does not allow."""

    def __init__(self, booking_id, current, target=None, message=None):
        self.booking_id = booking_id
        self.current = current
        self.target = target
        if message is None:
            message = f"Booking {booking_id} cannot move from {current.value} to {target.value}"
        super().__init__(message)


class ConflictError(BookingEngineError):
    """Normal-path creation blocked by existing bookings."""

    def __init__(self, message: str, conflicts=None):
        self.conflicts = list(conflicts or [])
        super().__init__(message)

    @property
    def conflict_count(self) -> int:
        return len(self.conflicts)


class MaintenanceBlockedError(BookingEngineError):
    """The requested window overlaps a scheduled maintenance block."""

    def __init__(self, message: str, blocks=None):
        self.blocks = list(blocks or [])
        super().__init__(message)


class EmergencyConflictError(BookingEngineError):
    """An emergency booking may not override another emergency booking."""

    def __init__(self, message: str, booking_id=None):
        self.booking_id = booking_id
        super().__init__(message)


class QuotaExceeded(BookingEngineError):
    """The user has used up their emergency bookings for this month."""

    def __init__(self, user_id, limit: int, used: int):
        self.user_id = user_id
        self.limit = limit
        self.used = used
        super().__init__(f"Emergency booking limit of {limit} per month exceeded ({used} used)")


class NotFoundError(BookingEngineError):
    """Referenced vehicle, booking or recurring series does not exist."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")
