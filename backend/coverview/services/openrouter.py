"""OpenRouter chat completion client.

This module wraps the OpenRouter API with:
- Explicit configuration (API key, base URL, attribution headers)
- Bounded request timeouts
- Retries on rate limits, server errors and transient network failures
- Token usage reporting

Every failure that leaves the caller without usable content is raised as
ProviderError, so the billing wrapper can settle the debit.
"""

import asyncio
import logging
import time
from typing import Literal, Optional

import httpx
from pydantic import BaseModel, Field

from coverview.core.config import settings
from coverview.core.exceptions import ProviderError

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    """A single chat message."""

    role: Literal["system", "user", "assistant"] = Field(..., description="Message role")
    content: str = Field(..., description="Message content")


class TokenUsage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = Field(default=0, description="Tokens in the prompt")
    completion_tokens: int = Field(default=0, description="Tokens in the completion")
    total_tokens: int = Field(default=0, description="Total tokens used")


class LLMResponse(BaseModel):
    """Response from LLM completion."""

    content: str = Field(..., description="Generated content")
    model: str = Field(..., description="Model used")
    finish_reason: Optional[str] = Field(default=None, description="Reason for completion")
    usage: TokenUsage = Field(default_factory=TokenUsage, description="Token usage")
    latency_ms: int = Field(default=0, description="Response latency in milliseconds")


class OpenRouterClient:
    """OpenRouter API client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        referer: str = "",
        title: str = "",
        timeout: float = 60.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the OpenRouter client.

        Args:
            api_key: OpenRouter API key
            base_url: API base URL
            referer: Value of the HTTP-Referer attribution header
            title: Value of the X-Title attribution header
            timeout: Request timeout in seconds
            max_retries: Maximum attempts for transient failures
            retry_delay: Base delay between attempts (multiplied by attempt number)
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.referer = referer
        self.title = title
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._transport = transport

        if not self.api_key:
            logger.warning("OpenRouter API key not configured")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> dict[str, str]:
        """Get request headers."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        if self.title:
            headers["X-Title"] = self.title
        return headers

    async def complete(
        self,
        messages: list[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate a completion from the LLM.

        Args:
            messages: List of chat messages
            model: OpenRouter model identifier
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with generated content and metadata

        Raises:
            ProviderError: If the key is missing, the request fails after
                retries, or the response carries no message content
        """
        if not self.api_key:
            raise ProviderError("OpenRouter API key not configured")

        payload = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        last_error = "no attempt made"

        for attempt in range(1, self.max_retries + 1):
            start_time = time.time()
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.post(
                        f"{self.base_url}/chat/completions",
                        headers=self._get_headers(),
                        json=payload,
                    )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"OpenRouter request failed: {e.__class__.__name__}"
                logger.warning(
                    f"LLM request failed (attempt {attempt}/{self.max_retries}): {e!r}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * attempt)
                continue

            latency_ms = int((time.time() - start_time) * 1000)

            if response.status_code == 429 or response.status_code >= 500:
                last_error = f"OpenRouter returned {response.status_code}"
                logger.warning(
                    f"LLM request failed (attempt {attempt}/{self.max_retries}): "
                    f"{response.status_code}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * attempt)
                continue

            if response.status_code >= 400:
                raise ProviderError(
                    f"OpenRouter returned {response.status_code}: {response.text[:200]}"
                )

            return self._parse_response(response, model, latency_ms)

        raise ProviderError(last_error)

    def _parse_response(self, response: httpx.Response, model: str, latency_ms: int) -> LLMResponse:
        try:
            data = response.json()
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Invalid AI response: {e.__class__.__name__}")

        if not isinstance(content, str):
            raise ProviderError("Invalid AI response: message content is not text")

        usage_data = data.get("usage") or {}
        usage = TokenUsage(
            prompt_tokens=usage_data.get("prompt_tokens", 0),
            completion_tokens=usage_data.get("completion_tokens", 0),
            total_tokens=usage_data.get("total_tokens", 0),
        )

        logger.debug(
            f"LLM completion: model={model}, tokens={usage.total_tokens}, "
            f"latency={latency_ms}ms"
        )

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            finish_reason=choice.get("finish_reason"),
            usage=usage,
            latency_ms=latency_ms,
        )


def get_openrouter_client(
    timeout: Optional[float] = None, max_retries: int = 2
) -> OpenRouterClient:
    """Build a client from application settings.

    Args:
        timeout: Per-attempt timeout (defaults to settings.LLM_REQUEST_TIMEOUT_SECONDS)
        max_retries: Maximum attempts
    """
    return OpenRouterClient(
        api_key=settings.OPENROUTER_API_KEY,
        base_url=settings.OPENROUTER_BASE_URL,
        referer=settings.OPENROUTER_REFERER,
        title=settings.OPENROUTER_TITLE,
        timeout=settings.LLM_REQUEST_TIMEOUT_SECONDS if timeout is None else timeout,
        max_retries=max_retries,
    )
