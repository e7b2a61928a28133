"""Library Visibility API - FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from library_visibility.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)

# Suppress noisy loggers - SQLAlchemy is especially chatty
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

from fastapi import FastAPI, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from library_visibility import __version__
from library_visibility.api.v1.router import api_router
from library_visibility.core.tasks import TaskManager
from library_visibility.db.database import init_db, get_db
from library_visibility.db.models import UserExcludedEntity
from library_visibility.scheduler import start_scheduler, stop_scheduler, next_run_time

logger = logging.getLogger(__name__)
task_manager = TaskManager.get_instance()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    if settings.create_tables_on_startup:
        await init_db()
        logger.info("Database tables created")

    start_scheduler()

    yield

    # Shutdown - let queued recomputes finish before cancelling the rest
    logger.info("Shutting down application...")
    stop_scheduler()
    await task_manager.wait_all(timeout=settings.background_task_shutdown_timeout)
    await task_manager.cancel_all(timeout=5.0)
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Per-user content visibility: hidden items, restrictions and materialized exclusions",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "background_tasks": task_manager.get_task_stats(),
        "next_recompute_all": next_run_time(),
    }


@app.get("/health/db")
async def db_status(db: AsyncSession = Depends(get_db)):
    """Check database connectivity and exclusion table size."""
    try:
        result = await db.execute(select(func.count()).select_from(UserExcludedEntity))
        excluded_rows = result.scalar_one_or_none() or 0
        return {"status": "healthy", "excluded_rows": excluded_rows}
    except Exception as e:
        logger.error(f"Health check DB error: {e}")
        return {"status": "error", "error": "Database health check failed"}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
