"""FastAPI application entry point.

This module configures the FastAPI application with:
- Logging
- CORS middleware for the editor frontend
- Error handlers rendering ``{"error": ..., "code": ...}`` bodies
- API v1 router with the billed AI and credit endpoints
- Health check endpoint
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from coverview.api.v1.api import api_router
from coverview.core.config import settings
from coverview.core.database import close_db, init_db
from coverview.core.exceptions import (
    CoverViewError,
    coverview_error_handler,
    validation_exception_handler,
)

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events.

    Handles:
    - Table creation in development (other environments run Alembic)
    - Graceful disposal of the database engine
    """
    # Startup
    logger.info(f"Starting {settings.PROJECT_NAME} API ({settings.ENVIRONMENT})...")

    if settings.ENVIRONMENT == "development":
        await init_db()
        logger.info("Database tables ensured")

    yield  # Application is running

    # Shutdown
    logger.info(f"Shutting down {settings.PROJECT_NAME} API...")
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Credit ledger and billed AI features for the cover image editor",
    version=settings.VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(CoverViewError, coverview_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Include API v1 router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/api/health", tags=["health"])
async def health_check():
    """Basic liveness check."""
    return {"status": "healthy", "service": settings.PROJECT_NAME, "version": settings.VERSION}
