"""
Error taxonomy and exception handlers for consistent error responses.

Business outcomes (insufficient credits, duplicate request, provider failure
after a debit) are answered with HTTP 200 and an ``error`` field. Transport,
authentication, validation and storage failures use 4xx/5xx status codes.
"""

import logging
from typing import Any, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CoverViewError(Exception):
    """Base exception for all errors surfaced to API callers."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_body(self) -> dict[str, Any]:
        """Render the JSON body returned to the client."""
        return {"error": self.message, "code": self.error_code, **self.details}


class AuthenticationError(CoverViewError):
    """Missing or invalid bearer credential. Raised before any ledger access."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(
            message=message,
            error_code="auth_error",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class ValidationError(CoverViewError):
    """Malformed request payload. Raised before any ledger access."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="validation_error",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InsufficientCreditsError(CoverViewError):
    """The account cannot cover the feature cost. Expected business outcome."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            message=(
                f"Insufficient credits (Requires {required}, Current {available}). "
                "Please top up or wait for next month reset."
            ),
            error_code="insufficient_credits",
            status_code=status.HTTP_200_OK,
            details={"required": required, "available": available, "credits": available},
        )


class DuplicateRequestError(CoverViewError):
    """A billed request reused an idempotency key that was already charged."""

    def __init__(self, request_id: str, credits: Optional[int] = None):
        self.request_id = request_id
        details: dict[str, Any] = {"request_id": request_id}
        if credits is not None:
            details["credits"] = credits
        super().__init__(
            message=f"Request {request_id} has already been processed",
            error_code="duplicate_request",
            status_code=status.HTTP_200_OK,
            details=details,
        )


class ProviderError(CoverViewError):
    """The external LLM or image service failed or returned unusable output.

    ``reason`` is the internal description (logged, never shown). ``refunded``
    and ``credits`` are filled in by the billing wrapper once it has settled
    the debit.
    """

    USER_MESSAGE = "Service temporarily unavailable, please try again later."

    def __init__(
        self,
        reason: str,
        *,
        refunded: Optional[bool] = None,
        credits: Optional[int] = None,
    ):
        self.reason = reason
        self.refunded = refunded
        self.credits = credits
        details: dict[str, Any] = {}
        if refunded is not None:
            details["refunded"] = refunded
        if credits is not None:
            details["credits"] = credits
        super().__init__(
            message=self.USER_MESSAGE,
            error_code="provider_error",
            status_code=status.HTTP_200_OK,
            details=details,
        )

    def __str__(self) -> str:
        return self.reason


class LedgerUnavailableError(CoverViewError):
    """The ledger storage failed. Nothing was applied, so retrying is safe."""

    def __init__(self, reason: str = "storage error"):
        self.reason = reason
        super().__init__(
            message="Billing is temporarily unavailable, please retry.",
            error_code="ledger_unavailable",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    def __str__(self) -> str:
        return f"Ledger unavailable: {self.reason}"


class TransactionNotFoundError(CoverViewError):
    """A referenced ledger transaction does not exist for this user."""

    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__(
            message=f"Transaction {transaction_id} not found",
            error_code="not_found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"transaction_id": transaction_id},
        )


# ============================================================================
# Exception handlers
# ============================================================================


async def coverview_error_handler(request: Request, exc: CoverViewError) -> JSONResponse:
    """Render any CoverViewError as ``{"error": ..., "code": ...}``."""
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the same shape as other errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"

    error = ValidationError(
        message,
        details={
            "details": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                for err in errors
            ]
        },
    )
    return JSONResponse(status_code=error.status_code, content=error.to_body())
