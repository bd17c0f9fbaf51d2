"""API dependencies for FastAPI route handlers.

This module provides dependency injection functions for:
- Database sessions
- Authentication (bearer JWT issued by the external auth provider)
- Ledger, billing, usage and AI feature services
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from coverview.core.config import settings
from coverview.core.database import get_db as get_db_session
from coverview.core.exceptions import AuthenticationError
from coverview.core.security import decode_access_token
from coverview.services.billing import BillingService, get_billing_service
from coverview.services.image_generator import ImageGenerator
from coverview.services.image_provider import get_image_client
from coverview.services.ledger import LedgerService, get_ledger_service
from coverview.services.openrouter import get_openrouter_client
from coverview.services.title_optimizer import TitleOptimizer
from coverview.services.usage import UsageService, get_usage_service


# HTTP Bearer token scheme; missing credentials are reported as AuthenticationError
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    Yields:
        AsyncSession for database operations
    """
    async for session in get_db_session():
        yield session


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Dependency to get the caller's user id from the bearer JWT.

    Runs before any ledger access; an unauthenticated request never opens
    a database session.

    Raises:
        AuthenticationError: 401 if the token is missing, invalid, or expired
    """
    if not credentials:
        raise AuthenticationError("Missing Authorization header")

    return decode_access_token(credentials.credentials).sub


async def get_ledger(db: AsyncSession = Depends(get_db)) -> LedgerService:
    return get_ledger_service(db)


async def get_billing(ledger: LedgerService = Depends(get_ledger)) -> BillingService:
    return get_billing_service(ledger)


async def get_usage(db: AsyncSession = Depends(get_db)) -> UsageService:
    return get_usage_service(db)


def get_title_optimizer() -> TitleOptimizer:
    return TitleOptimizer(get_openrouter_client(), default_model=settings.DEFAULT_TITLE_MODEL)


def get_image_generator() -> ImageGenerator:
    return ImageGenerator(
        get_openrouter_client(
            timeout=settings.PROMPT_REFINEMENT_TIMEOUT_SECONDS, max_retries=1
        ),
        get_image_client(),
        refinement_model=settings.PROMPT_REFINEMENT_MODEL,
        default_model=settings.DEFAULT_IMAGE_MODEL,
        width=settings.IMAGE_WIDTH,
        height=settings.IMAGE_HEIGHT,
        refinement_timeout=settings.PROMPT_REFINEMENT_TIMEOUT_SECONDS,
    )
