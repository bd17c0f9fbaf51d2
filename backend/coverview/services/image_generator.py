"""Cover image generation: optional prompt refinement, then rendering."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from coverview.core.exceptions import ProviderError
from coverview.services.image_provider import PollinationsClient
from coverview.services.openrouter import ChatMessage, OpenRouterClient
from coverview.services.prompts import (
    PROMPT_REFINEMENT_SYSTEM_PROMPT,
    apply_image_style,
    format_refinement_prompt,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageGenerationResult:
    """A rendered cover image and the prompt that produced it."""

    url: str
    prompt: str


class ImageGenerator:
    """Generates cover images for a description and style."""

    def __init__(
        self,
        llm: OpenRouterClient,
        images: PollinationsClient,
        refinement_model: str,
        default_model: str,
        width: int = 1024,
        height: int = 512,
        refinement_timeout: float = 10.0,
    ):
        self.llm = llm
        self.images = images
        self.refinement_model = refinement_model
        self.default_model = default_model
        self.width = width
        self.height = height
        self.refinement_timeout = refinement_timeout

    async def refine_prompt(
        self,
        description: str,
        style: str,
        title: Optional[str] = None,
    ) -> str:
        """Rewrite the description into a detailed image prompt.

        Best effort: without an API key, if the LLM fails, or if it takes
        longer than ``refinement_timeout``, the raw description is used
        unchanged.
        """
        if not self.llm.is_configured:
            logger.warning("OpenRouter API key not set, skipping prompt refinement")
            return description

        try:
            response = await asyncio.wait_for(
                self.llm.complete(
                    messages=[
                        ChatMessage(role="system", content=PROMPT_REFINEMENT_SYSTEM_PROMPT),
                        ChatMessage(
                            role="user",
                            content=format_refinement_prompt(description, style, title),
                        ),
                    ],
                    model=self.refinement_model,
                    max_tokens=200,
                ),
                timeout=self.refinement_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Prompt refinement timed out after {self.refinement_timeout:g}s, "
                f"using raw description"
            )
            return description
        except ProviderError as e:
            logger.warning(f"Prompt refinement failed, using raw description: {e}")
            return description

        refined = response.content.strip()
        return refined or description

    async def generate(
        self,
        prompt: str,
        style: str = "realistic",
        title: Optional[str] = None,
        model: Optional[str] = None,
        seed: Optional[int] = None,
    ) -> ImageGenerationResult:
        """Refine the prompt and render the image.

        Raises:
            ProviderError: If the image provider fails
        """
        refined = await self.refine_prompt(prompt, style, title)
        image = await self.images.generate(
            apply_image_style(refined, style),
            model=model or self.default_model,
            width=self.width,
            height=self.height,
            seed=seed,
        )
        return ImageGenerationResult(url=image.to_data_url(), prompt=refined)
