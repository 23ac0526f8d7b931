"""Live sentiment for Active markets.

Blends two signals on the 0-100 scale with equal weight:

    crowd:  stake+backing weighted mean of opinion_score (no external call)
    AI:     market-level sentiment over the current opinion texts

Confidence comes from the opinion count alone. The result is display-only
and never feeds settlement.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional, Set

from tricheck.oracle.config.settlement_params import MonitorParams
from tricheck.oracle.database.dbm import utcnow
from tricheck.oracle.gateways.models import MarketSummary
from tricheck.oracle.gateways.query import MarketQueryClient
from tricheck.oracle.gateways.store import MarketStoreClient
from tricheck.oracle.scoring.determinism import round_half_up
from tricheck.oracle.scoring.scorer import TripleCheckScorer
from tricheck.shared.enums import ConfidenceTier, MarketState

from .base import PollingMonitor

logger = logging.getLogger(__name__)


def confidence_tier(opinion_count: int, params: MonitorParams) -> ConfidenceTier:
    if opinion_count >= params.confidence_high_at:
        return ConfidenceTier.HIGH
    if opinion_count >= params.confidence_medium_at:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def blend_scores(crowd_score: Decimal, ai_score: int) -> int:
    """Unweighted mean of the two signals, rounded half-up."""
    return round_half_up((crowd_score + Decimal(ai_score)) / 2)


class LiveMonitor(PollingMonitor):
    name = "live-monitor"

    def __init__(
        self,
        query: MarketQueryClient,
        store: MarketStoreClient,
        scorer: TripleCheckScorer,
        params: Optional[MonitorParams] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.params = params or MonitorParams()
        super().__init__(self.params.live_interval_sec)
        self.query = query
        self.store = store
        self.scorer = scorer
        self.clock = clock
        self._last_scored: Dict[str, datetime] = {}
        self._semaphore = asyncio.Semaphore(self.params.live_concurrency)

    def is_debounced(self, market: MarketSummary, now: datetime) -> bool:
        """True if the market was scored within the debounce window.

        Checks both the API's ``live_scored_at`` and this process's own
        record, since the store write may lag or fail.
        """
        window = timedelta(seconds=self.params.live_debounce_sec)
        for last in (market.live_scored_at, self._last_scored.get(market.id)):
            if last is not None and now - last < window:
                return True
        return False

    async def run_once(self) -> int:
        markets = await self.query.list_markets(MarketState.ACTIVE)
        now = self.clock()
        self._forget_stale({m.id for m in markets}, now)
        due = [
            m for m in markets
            if not self.is_debounced(m, now) and m.staker_count >= self.params.live_min_opinions
        ]
        results = await asyncio.gather(*(self._score_guarded(m) for m in due))
        scored = sum(1 for ok in results if ok)
        logger.debug({"live_cycle": {"active": len(markets), "due": len(due), "scored": scored}})
        return scored

    def _forget_stale(self, active_ids: Set[str], now: datetime) -> None:
        # Entries only matter while the market is Active and inside the window
        window = timedelta(seconds=self.params.live_debounce_sec)
        for market_id, last in list(self._last_scored.items()):
            if market_id not in active_ids or now - last >= window:
                del self._last_scored[market_id]

    async def _score_guarded(self, market: MarketSummary) -> bool:
        async with self._semaphore:
            try:
                return await self.score_market(market.id)
            except Exception as e:
                logger.warning({"live_score_failed": {"market_id": market.id, "error": f"{type(e).__name__}: {e}"}})
                return False

    async def score_market(self, market_id: str) -> bool:
        """Compute and store the blended live sentiment for one market.

        Returns:
            False if the market has too few opinions to score
        """
        detail = await self.query.get_market(market_id)
        opinions = detail.opinions
        if len(opinions) < self.params.live_min_opinions:
            return False

        crowd = self.scorer.calculate_crowd_score(opinions)
        sentiment = await self.scorer.analyze_market_sentiment(detail.statement, opinions)
        blended = blend_scores(crowd, sentiment.score)
        confidence = confidence_tier(len(opinions), self.params)

        await self.store.update_live_sentiment(market_id, blended, confidence)
        self._last_scored[market_id] = self.clock()

        logger.debug({
            "live_sentiment_updated": {
                "market_id": market_id,
                "crowd_signal": str(crowd),
                "ai_signal": sentiment.score,
                "ai_fallback": sentiment.fallback,
                "blended": blended,
                "confidence": int(confidence),
                "opinions": len(opinions),
            }
        })
        return True


__all__ = ["LiveMonitor", "confidence_tier", "blend_scores"]
