"""Blog title optimization through an LLM."""

import logging
import re
from typing import Optional

from coverview.core.exceptions import ProviderError
from coverview.services.openrouter import ChatMessage, OpenRouterClient
from coverview.services.prompts import format_title_prompt

logger = logging.getLogger(__name__)

_NUMBERING = re.compile(r"^\d+\.\s*")


def parse_suggestions(content: str) -> list[str]:
    """Split an LLM reply into title suggestions.

    Leading ``"1. "`` style numbering is stripped and blank lines dropped. A
    reply with no usable lines becomes a single suggestion.
    """
    result = content.strip()
    suggestions = [
        _NUMBERING.sub("", line).strip()
        for line in result.split("\n")
    ]
    suggestions = [line for line in suggestions if line]
    if not suggestions and result:
        suggestions = [result]
    return suggestions


class TitleOptimizer:
    """Produces optimized title suggestions in a requested style."""

    def __init__(self, llm: OpenRouterClient, default_model: str):
        self.llm = llm
        self.default_model = default_model

    async def optimize(
        self,
        title: str,
        style: str = "professional",
        model: Optional[str] = None,
    ) -> list[str]:
        """Ask the LLM for optimized versions of ``title``.

        Raises:
            ProviderError: If the provider fails or the reply is empty
        """
        system_prompt, user_prompt = format_title_prompt(title, style)
        response = await self.llm.complete(
            messages=[
                ChatMessage(role="system", content=system_prompt),
                ChatMessage(role="user", content=user_prompt),
            ],
            model=model or self.default_model,
            temperature=0.7,
            max_tokens=500,
        )

        suggestions = parse_suggestions(response.content)
        if not suggestions:
            raise ProviderError("Invalid AI response: empty completion")

        logger.debug(f"Title optimization ({style}) produced {len(suggestions)} suggestions")
        return suggestions
