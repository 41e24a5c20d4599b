# app/services/event_publisher.py
"""
Booking domain event publisher.
Every outcome the engine decides (created, pending approval, approved,
cancelled, rescheduled …) is announced here. Delivery is best-effort: the
booking state already committed is the source of truth, so a failed POST is
logged and reported as False, never raised.
Extend here to add a message bus, push notifications, etc.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

import httpx

from app.config import settings
from app.models.booking import Booking
from app.utils.logger import get_logger

logger = get_logger(__name__)


class EventType(str, enum.Enum):
    BOOKING_CREATED = "BookingCreated"
    BOOKING_PENDING_APPROVAL = "BookingPendingApproval"
    BOOKING_APPROVED = "BookingApproved"
    BOOKING_CANCELLED = "BookingCancelled"
    BOOKING_RESCHEDULED = "BookingRescheduled"
    EMERGENCY_BOOKING_AUDIT = "EmergencyBookingAudit"
    RECURRING_BOOKING_CREATED = "RecurringBookingCreated"
    RECURRING_BOOKING_UPDATED = "RecurringBookingUpdated"
    RECURRING_BOOKING_CANCELLED = "RecurringBookingCancelled"
    RECURRING_BOOKING_CONFLICT = "RecurringBookingConflict"


def build_event(event_type: EventType, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type.value,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def booking_payload(booking: Booking, **extra) -> dict:
    payload = {
        "booking_id": booking.id,
        "vehicle_id": booking.vehicle_id,
        "group_id": booking.group_id,
        "user_id": booking.user_id,
        "start_at": booking.start_at.isoformat(),
        "end_at": booking.end_at.isoformat(),
        "status": booking.status.value,
        "priority": booking.priority.name,
        "is_emergency": bool(booking.is_emergency),
        "recurring_booking_id": booking.recurring_booking_id,
    }
    payload.update(extra)
    return payload


class EventPublisher:
    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def publish(self, event_type: EventType, data: dict) -> bool:
        event = build_event(event_type, data)
        logger.info(f"[EVENTS] {event_type.value} {data.get('booking_id') or data.get('recurring_booking_id') or ''}")

        if not self.webhook_url:
            return True

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=event)
                response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.warning(f"[EVENTS] {event_type.value} rejected by webhook: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"[EVENTS] {event_type.value} delivery failed: {e}")
        except Exception as e:
            logger.error(f"[EVENTS] {event_type.value} unexpected publish error: {e}", exc_info=True)
        return False


publisher = EventPublisher(settings.EVENT_WEBHOOK_URL, settings.EVENT_WEBHOOK_TIMEOUT_SECONDS)
