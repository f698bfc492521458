"""
FastAPI Application Entry Point.

This is the main application file for the Freight Marketplace Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.dependencies import get_current_user
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.redis_client import ping_redis
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from fastapi import HTTPException

# Import models to ensure they are registered with Base
from backend.app.models.organization import Organization
from backend.app.models.user import User
from backend.app.models.truck import Truck
from backend.app.models.truck_posting import TruckPosting
from backend.app.models.corridor import Corridor
from backend.app.models.load import Load
from backend.app.models.trip import Trip
from backend.app.models.load_request import LoadRequest
from backend.app.models.truck_request import TruckRequest
from backend.app.models.match_proposal import MatchProposal
from backend.app.models.load_event import LoadEvent
from backend.app.models.financial_account import FinancialAccount
from backend.app.models.journal_entry import JournalEntry
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.commission_rate import CommissionRate
from backend.app.models.dlq import DeadLetterQueue
from backend.app.models.notification import Notification

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Disposes the engine on shutdown.
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
    description="Load/truck matching, assignment and settlement for a freight marketplace",
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

    Returns:
        dict: Status, application information and cache reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "cache": "up" if await ping_redis() else "down",
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
        "message": "Welcome to the Freight Marketplace Backend API",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/me", tags=["Authentication"])
async def whoami(current_user: dict = Depends(get_current_user)):
    """
    Identity resolved from the bearer token.

    Returns 401 if the token is missing or invalid.
    """
    return {"authenticated_user": current_user}
