# app/services/recurrence_scheduler.py
"""
Background recurrence generation.
Runs one generation pass at startup and then every
RECURRENCE_RUN_INTERVAL_HOURS, each pass on a fresh DB session.
Setting the stop event ends the loop; a pass in progress finishes the
series it is on and stops before the next one.
"""

import asyncio
from datetime import timedelta
from typing import Optional

from app.config import settings
from app.database import SessionLocal
from app.repositories.sql import SqlBookingRepository, SqlMembershipLookup, SqlRecurringRepository
from app.services.event_publisher import publisher
from app.services.recurrence_expander import GenerationSummary, generate_all
from app.utils.logger import get_logger

logger = get_logger(__name__)


async def run_generation_pass(stop_event: Optional[asyncio.Event] = None) -> GenerationSummary:
    db = SessionLocal()
    try:
        return await generate_all(
            SqlBookingRepository(db),
            SqlMembershipLookup(db),
            SqlRecurringRepository(db),
            publisher,
            horizon=timedelta(days=settings.RECURRENCE_HORIZON_DAYS),
            stop_event=stop_event,
        )
    finally:
        db.close()


async def start_recurrence_scheduler(stop_event: asyncio.Event, interval_hours: Optional[float] = None,
                                     run_pass=run_generation_pass):
    """Loop until stop_event is set. Called once at backend startup."""
    interval = (interval_hours if interval_hours is not None else settings.RECURRENCE_RUN_INTERVAL_HOURS) * 3600
    logger.info(f"[RECURRING] Scheduler started (every {interval / 3600:g}h, "
                f"horizon {settings.RECURRENCE_HORIZON_DAYS} days)")

    while not stop_event.is_set():
        try:
            summary = await run_pass(stop_event)
            logger.debug(f"[RECURRING] Pass summary: {summary.as_dict()}")
        except Exception as e:
            logger.error(f"[RECURRING] Generation pass failed: {e}", exc_info=True)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    logger.info("[RECURRING] Scheduler stopped")
