# app/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + event webhook reachability.
"""

import requests
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from app.database import get_db
from app.config import settings
from app.utils.clock import utcnow

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Event webhook reachability (when one is configured)
    """
    result = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "event_webhook": "disabled",
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    if settings.EVENT_WEBHOOK_URL:
        try:
            resp = requests.head(settings.EVENT_WEBHOOK_URL, timeout=3)
            # Any answer means the receiver is up; many only accept POST
            result["event_webhook"] = "ok" if resp.status_code < 500 else f"http_{resp.status_code}"
        except requests.exceptions.ConnectionError:
            result["event_webhook"] = "unreachable"
            result["status"] = "degraded"
        except Exception as e:
            result["event_webhook"] = f"error: {str(e)}"

    return result
