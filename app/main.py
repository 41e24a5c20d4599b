# app/main.py
"""
FastAPI application entry point.
Includes security middleware, engine error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import bookings, recurring_bookings, health
from app.database import create_tables
from app.config import settings
from app.exceptions import (
    BookingEngineError, ConflictError, EmergencyConflictError, InvalidTransitionError,
    MaintenanceBlockedError, NotFoundError, QuotaExceeded, ValidationError,
)
from app.utils.logger import get_logger
import time
import asyncio

logger = get_logger(__name__)

app = FastAPI(
    title="CoShare Booking Engine API",
    description="Booking conflict resolution, priority scheduling, emergency overrides and recurring bookings.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS ─────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to the web client origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth between the gateway and this service.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {"/api/v1/health", "/docs", "/redoc", "/openapi.json"}
        if request.url.path in open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Engine Error Handlers ────────────────────────────────────────────────────
def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__, **extra})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    extra = {}
    if isinstance(exc, InvalidTransitionError):
        extra = {"booking_id": exc.booking_id, "current_status": exc.current.value}
    return _error(status.HTTP_400_BAD_REQUEST, exc, **extra)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return _error(status.HTTP_409_CONFLICT, exc, conflict_count=exc.conflict_count,
                  conflicting_booking_ids=[c.id for c in exc.conflicts])


@app.exception_handler(MaintenanceBlockedError)
async def maintenance_handler(request: Request, exc: MaintenanceBlockedError):
    return _error(status.HTTP_409_CONFLICT, exc, maintenance_block_ids=[b.id for b in exc.blocks])


@app.exception_handler(EmergencyConflictError)
async def emergency_conflict_handler(request: Request, exc: EmergencyConflictError):
    return _error(status.HTTP_409_CONFLICT, exc, booking_id=exc.booking_id)


@app.exception_handler(QuotaExceeded)
async def quota_handler(request: Request, exc: QuotaExceeded):
    return _error(status.HTTP_429_TOO_MANY_REQUESTS, exc, limit=exc.limit, used=exc.used)


@app.exception_handler(BookingEngineError)
async def engine_error_handler(request: Request, exc: BookingEngineError):
    return _error(status.HTTP_400_BAD_REQUEST, exc)


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(bookings.router,           prefix="/api/v1", tags=["📅 Bookings"])
app.include_router(recurring_bookings.router, prefix="/api/v1", tags=["🔁 Recurring Bookings"])
app.include_router(health.router,             prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
_scheduler_stop = asyncio.Event()
_scheduler_task = None


@app.on_event("startup")
async def startup():
    global _scheduler_task
    logger.info("🚀 Booking engine starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_HOST}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")

    if settings.RECURRENCE_SCHEDULER_ENABLED:
        from app.services.recurrence_scheduler import start_recurrence_scheduler
        _scheduler_stop.clear()
        _scheduler_task = asyncio.create_task(start_recurrence_scheduler(_scheduler_stop))
        logger.info("🔁 Recurring booking generation started")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Booking engine shutting down...")
    _scheduler_stop.set()
    if _scheduler_task is not None:
        await _scheduler_task
