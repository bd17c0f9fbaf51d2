"""Pydantic schemas for the billed AI endpoints.

Failure outcomes that are part of normal billing (insufficient credits,
duplicate request, provider failure) are returned with HTTP 200 and an
``error`` field, described by ErrorResponse.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

TitleStyle = Literal["professional", "catchy", "simple"]
ImageStyle = Literal["realistic", "artistic", "anime", "fantasy", "cyberpunk", "minimalist"]


class OptimizeTitleRequest(BaseModel):
    """Request model for title optimization."""

    title: str = Field(..., min_length=1, max_length=500, description="Blog title to optimize")
    style: TitleStyle = Field(default="professional", description="Suggestion style")
    model: Optional[str] = Field(default=None, description="OpenRouter model override")
    request_id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=128,
        description="Idempotency key; a request id is only ever charged once",
    )


class OptimizeTitleResponse(BaseModel):
    """Successful title optimization."""

    suggestions: list[str] = Field(description="Optimized title suggestions")
    credits: int = Field(description="Balance after the charge")
    cost: int = Field(description="Credits charged")


class GenerateImageRequest(BaseModel):
    """Request model for cover image generation."""

    prompt: str = Field(..., min_length=1, max_length=2000, description="Image description")
    style: ImageStyle = Field(default="realistic", description="Visual style")
    model: Optional[str] = Field(default=None, description="Image model override")
    title: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Blog title, used as context for prompt refinement",
    )
    request_id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=128,
        description="Idempotency key; a request id is only ever charged once",
    )


class GenerateImageResponse(BaseModel):
    """Successful image generation."""

    url: str = Field(description="Image as a data: URL")
    credits: int = Field(description="Balance after the charge")
    cost: int = Field(description="Credits charged")
    prompt: str = Field(description="Prompt used for rendering")


class ErrorResponse(BaseModel):
    """Body of every failed request."""

    error: str = Field(description="Human-readable error message")
    code: str = Field(description="Machine-readable error code")
    credits: Optional[int] = Field(default=None, description="Current balance, when known")
    required: Optional[int] = Field(default=None, description="Cost of the feature")
    available: Optional[int] = Field(default=None, description="Balance at rejection")
    refunded: Optional[bool] = Field(
        default=None, description="Whether a failed feature's charge was reversed"
    )
    request_id: Optional[str] = Field(default=None, description="Reused idempotency key")
