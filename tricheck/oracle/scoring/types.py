"""Type definitions and constants for the settlement scorer."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tricheck.shared.enums import ConfidenceTier


class ValidationError(Exception):
    """Raised when input validation fails."""

    pass


class RatingError(Exception):
    """Raised by a rating service when a response cannot be used."""

    pass


# ─────────────────────────────────────────────────────────────────────────────
# Inputs
# ─────────────────────────────────────────────────────────────────────────────


class Opinion(BaseModel):
    """A single stake on a market, as captured when the market closed.

    Amounts are integers in the smallest currency unit (micro-USDC).
    ``backing_total`` starts at the author's own stake; peers add to it.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    staker: str = Field(min_length=1)
    amount: int = Field(ge=0)
    opinion_text: str = ""
    opinion_score: int = Field(default=50, ge=0, le=100)
    market_prediction: int = Field(default=50, ge=0, le=100)
    backing_total: int = Field(default=0, ge=0)
    slashing_total: int = Field(default=0, ge=0)

    @property
    def net_backing(self) -> int:
        return self.backing_total - self.slashing_total


# ─────────────────────────────────────────────────────────────────────────────
# Outputs
# ─────────────────────────────────────────────────────────────────────────────


class ScoredOpinion(Opinion):
    """Opinion with all three layer scores and its dual-pool payout.

    ``payout_amount`` excludes the jackpot; the winner's jackpot is paid
    by a separate ledger claim.
    """

    weight_score: int = Field(ge=0, le=100)
    prediction_score: int = Field(ge=0, le=100)
    ai_score: int = Field(ge=0, le=100)
    combined_bps: int = Field(ge=0, le=10_000)
    combined_score: int = Field(ge=0, le=100)
    opinion_payout: int = Field(default=0, ge=0)
    prediction_payout: int = Field(default=0, ge=0)
    payout_amount: int = Field(default=0, ge=0)
    payout_share: Decimal = Decimal("0")
    jackpot_eligible: bool = False
    jackpot_winner: bool = False


class PoolSplit(BaseModel):
    """How one market's total stake is carved up."""

    model_config = ConfigDict(frozen=True)

    total_stake: int
    protocol_fee: int
    distributable_pool: int
    opinion_pool: int
    prediction_pool: int
    jackpot_pool: int
    proportional_prediction_pool: int


class SettlementResult(BaseModel):
    """Full output of one scorer run for one market."""

    model_config = ConfigDict(frozen=True)

    crowd_score: Decimal
    opinions: List[ScoredOpinion]
    pools: PoolSplit
    total_net_backing: int
    total_prediction_weight: int
    jackpot_winner_id: Optional[str] = None
    jackpot_winner_staker: Optional[str] = None
    jackpot_amount: int = 0
    ai_fallback: bool = False

    @property
    def total_payout(self) -> int:
        return sum(op.payout_amount for op in self.opinions)

    def opinion(self, opinion_id: str) -> ScoredOpinion:
        for op in self.opinions:
            if op.id == opinion_id:
                return op
        raise KeyError(opinion_id)


class MarketSentiment(BaseModel):
    """Coarse market-level read kept for display and the ledger record."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    confidence: ConfidenceTier = ConfidenceTier.LOW
    summary: str = ""
    fallback: bool = False


__all__ = [
    "ValidationError",
    "RatingError",
    "Opinion",
    "ScoredOpinion",
    "PoolSplit",
    "SettlementResult",
    "MarketSentiment",
]
