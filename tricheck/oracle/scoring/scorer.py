"""Triple-check scorer.

Blends three independently scored layers into one combined score per
opinion and computes the dual-pool payout:

    Layer 1 (W, 50%): net peer backing, rescaled across the set
    Layer 2 (C, 30%): closeness of market_prediction to the crowd score
    Layer 3 (A, 20%): externally rated text quality

    combined_bps = W×50 + C×30 + A×20      (0-10000)

Everything except the rating call and the jackpot draw is a pure function
of the opinion snapshot and total stake. The scorer holds no per-run state,
so one instance is shared by every settlement worker.
"""

from __future__ import annotations

import asyncio
import logging
import random
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from tricheck.oracle.config.settlement_params import SettlementParams, get_settlement_params
from tricheck.oracle.rating.base import RatingService
from tricheck.oracle.rating.parsing import check_scores
from tricheck.oracle.rating.prompts import truncate
from tricheck.shared.enums import ConfidenceTier

from .consensus import calculate_crowd_score
from .layers import calculate_prediction_scores, calculate_weight_scores, combine_layers
from .payout import (
    compute_dual_pool,
    draw_jackpot_winner,
    jackpot_eligible_ids,
    payout_shares,
    split_pools,
)
from .types import MarketSentiment, Opinion, ScoredOpinion, SettlementResult
from .validation import validate_total_stake

logger = logging.getLogger(__name__)

NO_OPINIONS_SUMMARY = "No opinions submitted."
UNAVAILABLE_SUMMARY = "Analysis unavailable."


class TripleCheckScorer:
    """Computes settlement scores and payouts for one market at a time."""

    def __init__(
        self,
        rating: RatingService,
        params: SettlementParams | None = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the scorer.

        Args:
            rating: External rating service for Layer 3 and market summaries
            params: Settlement parameters (uses defaults if None)
            rng: Source of randomness for the jackpot draw (SystemRandom if None)
        """
        self.rating = rating
        self.params = params or get_settlement_params()
        self.rng = rng or random.SystemRandom()

    # ── Layers 1 and 2 ──────────────────────────────────────────────────────

    def calculate_crowd_score(self, opinions: Sequence[Opinion]) -> Decimal:
        return calculate_crowd_score(opinions, self.params)

    def calculate_weight_scores(self, opinions: Sequence[Opinion]) -> Dict[str, int]:
        return calculate_weight_scores(opinions, self.params)

    def calculate_prediction_scores(
        self,
        opinions: Sequence[Opinion],
        crowd_score: Decimal,
    ) -> Dict[str, int]:
        return calculate_prediction_scores(opinions, crowd_score)

    # ── Layer 3 ─────────────────────────────────────────────────────────────

    async def score_opinion_texts(
        self,
        statement: str,
        opinions: Sequence[Opinion],
    ) -> Dict[str, int]:
        """Rate every opinion text 0-100, neutral 50 wherever rating fails."""
        scores, _ = await self._score_texts(statement, opinions)
        return scores

    async def _score_texts(
        self,
        statement: str,
        opinions: Sequence[Opinion],
    ) -> Tuple[Dict[str, int], bool]:
        """Rate in batches of ``max_batch_size``, all batches in parallel.

        Layer 3 takes at most one ``timeout_sec`` however many batches
        there are.

        Returns:
            (scores by opinion id, True if any batch fell back)
        """
        rp = self.params.rating
        starts = range(0, len(opinions), rp.max_batch_size)
        batches = [list(opinions[s:s + rp.max_batch_size]) for s in starts]
        rated = await asyncio.gather(*(
            self._rate_batch(statement, batch, start) for start, batch in zip(starts, batches)
        ))

        scores: Dict[str, int] = {}
        fell_back = False
        for batch, (batch_scores, batch_fell_back) in zip(batches, rated):
            fell_back = fell_back or batch_fell_back
            for op, score in zip(batch, batch_scores):
                scores[op.id] = score
        return scores, fell_back

    async def _rate_batch(
        self,
        statement: str,
        batch: List[Opinion],
        start: int,
    ) -> Tuple[List[int], bool]:
        rp = self.params.rating
        neutral = self.params.layers.neutral_score
        texts = [truncate(op.opinion_text, rp.max_text_chars) for op in batch]
        try:
            raw = await asyncio.wait_for(
                self.rating.rate_opinions(statement, texts),
                timeout=rp.timeout_sec,
            )
            return check_scores(raw, len(batch)), False
        except Exception as e:
            logger.warning({
                "ai_scoring_fallback": {
                    "batch_start": start,
                    "batch_size": len(batch),
                    "error": f"{type(e).__name__}: {e}",
                    "default": neutral,
                }
            })
            return [neutral] * len(batch), True

    # ── Market-level summary ────────────────────────────────────────────────

    async def analyze_market_sentiment(
        self,
        statement: str,
        opinions: Sequence[Opinion],
    ) -> MarketSentiment:
        """Coarse single-number sentiment kept for display and the ledger."""
        if not opinions:
            return MarketSentiment(
                score=self.params.layers.neutral_score,
                confidence=ConfidenceTier.LOW,
                summary=NO_OPINIONS_SUMMARY,
            )
        try:
            return await asyncio.wait_for(
                self.rating.summarize_market(statement, opinions),
                timeout=self.params.rating.timeout_sec,
            )
        except Exception as e:
            logger.warning({"market_sentiment_fallback": f"{type(e).__name__}: {e}"})
            return MarketSentiment(
                score=self.params.layers.neutral_score,
                confidence=ConfidenceTier.LOW,
                summary=UNAVAILABLE_SUMMARY,
                fallback=True,
            )

    # ── Full computation ────────────────────────────────────────────────────

    async def compute_triple_check_scores(
        self,
        statement: str,
        opinions: Sequence[Opinion],
        total_stake: int,
        rng: Optional[random.Random] = None,
    ) -> SettlementResult:
        """Run all three layers and the dual-pool payout for one market."""
        logger.info({"triple_check_start": {"opinions": len(opinions), "total_stake": total_stake}})
        ai_scores, fell_back = await self._score_texts(statement, opinions)
        return self.compute_settlement(
            opinions,
            total_stake,
            ai_scores,
            rng=rng,
            ai_fallback=fell_back,
        )

    def compute_settlement(
        self,
        opinions: Sequence[Opinion],
        total_stake: int,
        ai_scores: Dict[str, int],
        *,
        rng: Optional[random.Random] = None,
        ai_fallback: bool = False,
    ) -> SettlementResult:
        """Deterministic part of settlement given already-known AI scores.

        Only the jackpot draw consumes ``rng``.
        """
        total_stake = validate_total_stake(total_stake)
        params = self.params
        neutral = params.layers.neutral_score

        weight_scores = self.calculate_weight_scores(opinions)
        crowd_score = self.calculate_crowd_score(opinions)
        prediction_scores = self.calculate_prediction_scores(opinions, crowd_score)

        pools = split_pools(total_stake, params)
        opinion_payouts, prediction_payouts, total_net_backing, total_prediction_weight = (
            compute_dual_pool(opinions, crowd_score, pools, params)
        )

        eligible = jackpot_eligible_ids(opinions, crowd_score, params)
        winner_id = draw_jackpot_winner(eligible, rng or self.rng)
        eligible_set = set(eligible)

        payouts = {op.id: opinion_payouts[op.id] + prediction_payouts[op.id] for op in opinions}
        shares = payout_shares(payouts)

        scored: List[ScoredOpinion] = []
        for op in opinions:
            w = weight_scores[op.id]
            c = prediction_scores[op.id]
            a = ai_scores.get(op.id, neutral)
            combined_bps, combined_score = combine_layers(w, c, a, params)
            scored.append(
                ScoredOpinion(
                    **op.model_dump(include=set(Opinion.model_fields)),
                    weight_score=w,
                    prediction_score=c,
                    ai_score=a,
                    combined_bps=combined_bps,
                    combined_score=combined_score,
                    opinion_payout=opinion_payouts[op.id],
                    prediction_payout=prediction_payouts[op.id],
                    payout_amount=payouts[op.id],
                    payout_share=shares[op.id],
                    jackpot_eligible=op.id in eligible_set,
                    jackpot_winner=op.id == winner_id,
                )
            )

        winner = next((op for op in scored if op.jackpot_winner), None)
        return SettlementResult(
            crowd_score=crowd_score,
            opinions=scored,
            pools=pools,
            total_net_backing=total_net_backing,
            total_prediction_weight=total_prediction_weight,
            jackpot_winner_id=winner.id if winner else None,
            jackpot_winner_staker=winner.staker if winner else None,
            jackpot_amount=pools.jackpot_pool if winner else 0,
            ai_fallback=ai_fallback,
        )


__all__ = ["TripleCheckScorer", "NO_OPINIONS_SUMMARY", "UNAVAILABLE_SUMMARY"]
