"""
FastAPI Application Entry Point.

This is the main application file for the float ledger backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError

from floatledger.app.core.config import settings
from floatledger.app.api.v1.router import router as api_v1_router
from floatledger.app.core.observability import ObservabilityMiddleware, configure_logging
from floatledger.app.core.redis_client import close_redis, ping_redis
from floatledger.app.db.session import engine, Base, AsyncSessionLocal
from floatledger.app.services.notification_service import DatabaseNotifier, NotificationDispatcher
from floatledger.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    integrity_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from floatledger.app.models.user import User
from floatledger.app.models.account import Account
from floatledger.app.models.ledger_entry import LedgerEntry
from floatledger.app.models.rollover_watermark import RolloverWatermark
from floatledger.app.models.notification import Notification


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables on startup.
    2. Waits for pending notification deliveries and closes Redis on shutdown.
    """
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.notifications = NotificationDispatcher(DatabaseNotifier(AsyncSessionLocal))
    yield
    await app.state.notifications.drain()
    await close_redis()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Float ledger: supervisor balances, daily rollover and audited corrections",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(IntegrityError, integrity_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Float Ledger API",
        "docs": "/docs",
        "health": "/health",
    }
