"""API routes for the billed AI features.

This module provides REST endpoints for:
- POST /api/v1/ai/optimize-title - Title suggestions (charged per call)
- POST /api/v1/ai/generate-image - Cover image generation (charged per call)

Each call is charged before the provider runs. Insufficient credits, a reused
request id and a provider failure are answered with HTTP 200 and an ``error``
body (see ErrorResponse).
"""

import logging

from fastapi import APIRouter, Depends

from coverview.api.deps import (
    get_billing,
    get_current_user_id,
    get_image_generator,
    get_title_optimizer,
)
from coverview.models.transaction import Feature
from coverview.schemas.ai import (
    ErrorResponse,
    GenerateImageRequest,
    GenerateImageResponse,
    OptimizeTitleRequest,
    OptimizeTitleResponse,
)
from coverview.services.billing import BillingService
from coverview.services.image_generator import ImageGenerator
from coverview.services.title_optimizer import TitleOptimizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

BILLING_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    422: {"model": ErrorResponse, "description": "Malformed request body"},
    503: {"model": ErrorResponse, "description": "Ledger unavailable, safe to retry"},
}


@router.post(
    "/optimize-title",
    response_model=OptimizeTitleResponse,
    responses=BILLING_ERRORS,
    summary="Optimize a blog title",
    description="Suggest better titles in the requested style",
)
async def optimize_title(
    request: OptimizeTitleRequest,
    user_id: str = Depends(get_current_user_id),
    billing: BillingService = Depends(get_billing),
    optimizer: TitleOptimizer = Depends(get_title_optimizer),
) -> OptimizeTitleResponse:
    """Charge the title optimization cost and return suggestions.

    Args:
        request: Title, style and optional idempotency key
        user_id: Authenticated caller
        billing: Billing wrapper bound to this request's session
        optimizer: Title optimization feature

    Returns:
        OptimizeTitleResponse with suggestions and the post-charge balance
    """
    billed = await billing.run(
        user_id,
        Feature.TITLE_OPTIMIZATION,
        lambda: optimizer.optimize(request.title, request.style, request.model),
        request_id=request.request_id,
        metadata={
            "style": request.style,
            "model": request.model or optimizer.default_model,
        },
    )

    return OptimizeTitleResponse(
        suggestions=billed.value,
        credits=billed.credits,
        cost=billed.cost,
    )


@router.post(
    "/generate-image",
    response_model=GenerateImageResponse,
    responses=BILLING_ERRORS,
    summary="Generate a cover image",
    description="Render a cover image for a description in the requested style",
)
async def generate_image(
    request: GenerateImageRequest,
    user_id: str = Depends(get_current_user_id),
    billing: BillingService = Depends(get_billing),
    generator: ImageGenerator = Depends(get_image_generator),
) -> GenerateImageResponse:
    """Charge the image generation cost and return the image.

    Args:
        request: Description, style, optional title and idempotency key
        user_id: Authenticated caller
        billing: Billing wrapper bound to this request's session
        generator: Image generation feature

    Returns:
        GenerateImageResponse with a data URL and the post-charge balance
    """
    billed = await billing.run(
        user_id,
        Feature.IMAGE_GENERATION,
        lambda: generator.generate(
            request.prompt,
            style=request.style,
            title=request.title,
            model=request.model,
        ),
        request_id=request.request_id,
        metadata={
            "style": request.style,
            "model": request.model or generator.default_model,
        },
    )

    return GenerateImageResponse(
        url=billed.value.url,
        credits=billed.credits,
        cost=billed.cost,
        prompt=billed.value.prompt,
    )
