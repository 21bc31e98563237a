"""
FastAPI Application Entry Point.

This is the main application file for the Masjid Committee Dues Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from masjid_backend.app.core.config import settings
from masjid_backend.app.api.v1.router import router as api_v1_router
from masjid_backend.app.core.dependencies import get_redis
from masjid_backend.app.core.observability import ObservabilityMiddleware
from masjid_backend.app.core.redis_client import create_redis_client, ping_redis
from masjid_backend.app.db.session import engine, Base, AsyncSessionLocal, get_db
from masjid_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from masjid_backend.app.services.scheduler import DebtScheduler
from masjid_backend.app.services.sync_relay import SyncRelay

# Import models to ensure they are registered with Base
from masjid_backend.app.models.member import Member
from masjid_backend.app.models.debt import Debt
from masjid_backend.app.models.payment import Payment
from masjid_backend.app.models.audit_log import AuditLog
from masjid_backend.app.models.sync_operation import SyncOperation
from masjid_backend.app.models.dlq import DeadLetterQueue

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables.
    2. Builds the Redis client, the Sync Relay and the debt scheduler.
    3. Stops the scheduler and closes Redis on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.redis = create_redis_client()
    app.state.sync_relay = SyncRelay(AsyncSessionLocal, app.state.redis)

    app.state.debt_scheduler = None
    if settings.scheduler_enabled:
        app.state.debt_scheduler = DebtScheduler(AsyncSessionLocal)
        app.state.debt_scheduler.start()

    yield

    if app.state.debt_scheduler:
        await app.state.debt_scheduler.stop()
    await app.state.redis.aclose()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Membership, dues and debt ledger backend for a masjid committee",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(db: AsyncSession = Depends(get_db), redis_client=Depends(get_redis)):
    """
    Health check endpoint.

    Reports database and Redis reachability. Redis only backs sync
    claims, so losing it degrades the service instead of failing it.
    """
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning("Health check database probe failed: %s", e)
        database = "unavailable"

    redis_ok = redis_client is not None and await ping_redis(redis_client)

    if database != "ok":
        overall = "unhealthy"
    elif not redis_ok:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "app_name": settings.app_name,
        "version": settings.api_version,
        "database": database,
        "redis": "ok" if redis_ok else "unavailable",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Masjid Committee Dues API",
        "docs": "/docs",
        "health": "/health",
    }
