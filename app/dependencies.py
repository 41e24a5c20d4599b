# app/dependencies.py
"""FastAPI dependencies shared by the booking routers."""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.repositories.sql import SqlBookingRepository, SqlMembershipLookup, SqlRecurringRepository
from app.services.booking_service import BookingService
from app.services.event_publisher import publisher
from app.services.recurring_booking_service import RecurringBookingService


def get_current_user_id(x_user_id: str = Header(None)) -> str:
    # Identity is asserted by the upstream gateway; the engine only needs the id
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(SqlBookingRepository(db), SqlMembershipLookup(db), publisher)


def get_recurring_service(db: Session = Depends(get_db)) -> RecurringBookingService:
    return RecurringBookingService(
        SqlBookingRepository(db), SqlMembershipLookup(db), SqlRecurringRepository(db), publisher,
    )
