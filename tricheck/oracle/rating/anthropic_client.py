"""Anthropic-backed rating service."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import anthropic

from tricheck.oracle.scoring.types import MarketSentiment, Opinion, RatingError

from .base import RatingService
from .parsing import parse_score_array, parse_sentiment
from .prompts import build_quality_prompt, build_sentiment_prompt

logger = logging.getLogger(__name__)


class AnthropicRatingService(RatingService):
    """Rates opinions with a Claude model through the Messages API.

    Transport errors and timeouts propagate; malformed content raises
    ``RatingError``. Both end in the scorer's neutral fallback.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "claude-opus-4-6",
        timeout_sec: float = 60.0,
        max_tokens: int = 512,
        summary_max_tokens: int = 300,
        max_text_chars: int = 200,
        client: Optional[Any] = None,
    ):
        if not api_key and client is None:
            raise ValueError("an API key is required for the rating service")
        self.model = model
        self.max_tokens = max_tokens
        self.summary_max_tokens = summary_max_tokens
        self.max_text_chars = max_text_chars
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=timeout_sec,
            max_retries=1,
        )

    async def rate_opinions(self, statement: str, texts: Sequence[str]) -> List[int]:
        if not texts:
            return []
        prompt = build_quality_prompt(statement, texts)
        text = await self._complete(prompt, self.max_tokens)
        return parse_score_array(text, len(texts))

    async def summarize_market(
        self,
        statement: str,
        opinions: Sequence[Opinion],
    ) -> MarketSentiment:
        prompt = build_sentiment_prompt(statement, opinions, self.max_text_chars)
        text = await self._complete(prompt, self.summary_max_tokens)
        return parse_sentiment(text)

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        logger.debug({"rating_request": {"model": self.model, "prompt_chars": len(prompt)}})
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise RatingError(f"rating request failed: {e}") from e

        if not response.content:
            raise RatingError("empty rating response")
        block = response.content[0]
        if getattr(block, "type", None) != "text":
            raise RatingError(f"unexpected content block {getattr(block, 'type', None)!r}")
        return block.text.strip()

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()


__all__ = ["AnthropicRatingService"]
