"""Pydantic schemas for bearer credentials."""

from typing import Optional

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    """Schema for a verified JWT payload (internal use)."""

    sub: str = Field(..., min_length=1, description="Subject (opaque user ID)")
    exp: int = Field(..., description="Expiration timestamp")
    iat: Optional[int] = Field(default=None, description="Issued at timestamp")
    email: Optional[str] = Field(default=None, description="Email claim, if present")
    role: Optional[str] = Field(default=None, description="Role claim, if present")
