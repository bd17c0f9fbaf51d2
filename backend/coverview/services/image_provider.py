"""Pollinations image generation client.

The prompt is embedded in the request path and the image bytes are fetched
server-side, then handed back to the browser as a ``data:`` URL.
"""

import base64
import logging
import random
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlencode

import httpx

from coverview.core.config import settings
from coverview.core.exceptions import ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedImage:
    """Raw image returned by the provider."""

    content_type: str
    data: bytes

    def to_data_url(self) -> str:
        """Encode the image as a ``data:<type>;base64,...`` URL."""
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class PollinationsClient:
    """Client for the Pollinations image endpoint."""

    def __init__(
        self,
        base_url: str = "https://gen.pollinations.ai/image",
        token: str = "",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def build_url(
        self,
        prompt: str,
        model: str,
        width: int,
        height: int,
        seed: int,
    ) -> str:
        """Build the generation URL for a prompt."""
        params = urlencode(
            {
                "model": model,
                "width": str(width),
                "height": str(height),
                "seed": str(seed),
                "enhance": "true",
                "nologo": "true",
                "safe": "true",
            }
        )
        return f"{self.base_url}/{quote(prompt, safe='')}?{params}"

    async def generate(
        self,
        prompt: str,
        model: str,
        width: int,
        height: int,
        seed: Optional[int] = None,
    ) -> GeneratedImage:
        """Render an image for a prompt.

        Raises:
            ProviderError: On transport failure, non-2xx status, a non-image
                content type or an empty body
        """
        if seed is None:
            seed = random.randint(0, 999_999)

        url = self.build_url(prompt, model, width, height, seed)
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(url, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise ProviderError(f"Image provider request failed: {e.__class__.__name__}")

        if response.status_code >= 400:
            raise ProviderError(
                f"Image provider error: {response.status_code} {response.reason_phrase}"
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            raise ProviderError(f"Image provider returned {content_type or 'no content type'}")
        if not response.content:
            raise ProviderError("Image provider returned an empty body")

        logger.debug(f"Generated image: {len(response.content)} bytes, seed={seed}")
        return GeneratedImage(content_type=content_type, data=response.content)


def get_image_client() -> PollinationsClient:
    """Build a client from application settings."""
    return PollinationsClient(
        base_url=settings.POLLINATIONS_BASE_URL,
        token=settings.POLLINATIONS_TOKEN,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
