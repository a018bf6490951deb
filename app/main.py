from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import text

from app.db.base import get_db
from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.core.scheduler import MaintenanceScheduler
from app.routers import analytics as analytics_router
from app.services.sweep import run_sweep
from app.core.errors import (
    AnalyticsException,
    analytics_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)

configure_logging()
logger = get_logger(__name__)

SWEEP_JOB_ID = "aggregate-sweep"


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler: MaintenanceScheduler | None = None
    if settings.SWEEP_ENABLED:
        scheduler = MaintenanceScheduler()
        scheduler.start()
        scheduler.schedule_every(SWEEP_JOB_ID, run_sweep, minutes=settings.SWEEP_INTERVAL_MINUTES)
        logger.info("sweep_scheduled", interval_minutes=settings.SWEEP_INTERVAL_MINUTES)
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown()


app = FastAPI(
    title="Check-in Analytics API",
    description=(
        "**Analytics aggregation & compliance engine** for weekly team check-ins.\n\n"
        "Pulse, shoutouts, leaderboards, submission and review compliance, and an "
        "overview per organization, team or user, bucketed by week, month, quarter "
        "or year. Reads are served live or from precomputed aggregates.\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers (most specific first) ---
app.add_exception_handler(AnalyticsException, analytics_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(analytics_router.router)


@app.get("/health", tags=["health"], summary="Health check")
def health(db: Session = Depends(get_db)):
    """
    Returns `{"status": "ok", "db": "ok"}` when both the API and the database
    are reachable. Returns HTTP 503 if the DB is down.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        logger.warning("health_db_unreachable")
        db_status = "unreachable"

    if db_status != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "error", "db": db_status},
        )
    return {"status": "ok", "db": "ok", "env": settings.APP_ENV}
