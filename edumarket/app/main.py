"""
FastAPI Application Entry Point.

This is the main application file for the EduMarket Ledger Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from edumarket.app.core.config import settings
from edumarket.app.api.v1.router import router as api_v1_router
from edumarket.app.core.observability import ObservabilityMiddleware
from edumarket.app.core.redis_client import ping_redis
from edumarket.app.db.session import engine, Base
from edumarket.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from edumarket.app.models.user import User
from edumarket.app.models.audit_log import AuditLog
from edumarket.app.models.course import Course
from edumarket.app.models.ledger_entry import LedgerEntry
from edumarket.app.models.meeting import Meeting  # FK to ledger_entries
from edumarket.app.models.teacher_balance import TeacherBalance
from edumarket.app.models.earning_credit import EarningCredit
from edumarket.app.models.payout import PayoutRequest
from edumarket.app.models.dlq import DeadLetterQueue
from edumarket.app.models.notification import Notification

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Earnings ledger and payout settlement for the education marketplace",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis being down degrades settlement locking but not correctness.
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
