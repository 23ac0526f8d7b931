"""External rating service interface.

The rating service is a black box that scores text. Implementations raise
``RatingError`` (or let transport errors propagate) on any failure; the
scorer owns the neutral-default fallback, so implementations never
fabricate scores themselves.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from tricheck.oracle.scoring.types import MarketSentiment, Opinion


class RatingService(ABC):
    """Scores opinion texts and summarises market sentiment."""

    @abstractmethod
    async def rate_opinions(self, statement: str, texts: Sequence[str]) -> List[int]:
        """Rate each text 0-100 on clarity, insight, reasoning and originality.

        Args:
            statement: The market statement the opinions respond to
            texts: Opinion texts, already truncated, in order

        Returns:
            One integer per text, same order

        Raises:
            RatingError: If the response is unusable
        """

    @abstractmethod
    async def summarize_market(
        self,
        statement: str,
        opinions: Sequence[Opinion],
    ) -> MarketSentiment:
        """Single 0-100 sentiment, a 0-2 confidence tier and a one-line summary.

        Raises:
            RatingError: If the response is unusable
        """

    async def close(self) -> None:
        return None


__all__ = ["RatingService"]
