"""
Service layer that turns a story request into a titled, page-split narrative.
"""

from __future__ import annotations

import logging

from storyloom.providers.base import TextRequest
from storyloom.providers.fallback import ChainResult, FallbackChain

from .parsing import ParsedStory, parse_story_text
from .prompting import StoryPrompt, build_story_prompt
from .request import StoryRequest

logger = logging.getLogger(__name__)


class NarrativeGenerator:
    """
    High-level helper that asks the text chain for a story and parses it into pages.
    """

    def __init__(
        self,
        chain: FallbackChain,
        *,
        temperature: float = 0.7,
        max_output_tokens: int = 2500,
    ) -> None:
        self._chain = chain
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens

    def build_request(self, request: StoryRequest) -> TextRequest:
        prompt: StoryPrompt = build_story_prompt(request)
        return TextRequest(
            system=prompt.system,
            user=prompt.user,
            temperature=self._temperature,
            max_tokens=self._max_output_tokens,
        )

    async def generate(self, request: StoryRequest) -> tuple[ParsedStory, ChainResult]:
        """
        Execute the text chain once; raises :class:`AggregateError` if every model fails.
        """
        result = await self._chain.execute(self.build_request(request))
        raw_text = result.asset.text or ""
        logger.info(
            "Narrative drafted by %s (%d words)", result.provider, len(raw_text.split())
        )
        parsed = parse_story_text(
            raw_text,
            name=request.name,
            page_count=request.page_count,
            language=request.language,
        )
        return parsed, result
