"""API v1 router aggregation."""

from fastapi import APIRouter

from coverview.api.v1.routers import ai, credits

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(ai.router)  # Billed AI features
api_router.include_router(credits.router)  # Balance, history and usage
