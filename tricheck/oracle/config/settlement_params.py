"""Settlement hyperparameters and configuration.

All settlement-related configuration lives here to ensure:
1. Single source of truth for pool splits and layer weights
2. Reproducible payouts (same params + same opinions = same result)
3. Easy tuning without touching the scoring code

IMPORTANT: Pool and weight parameters mirror the ledger program. Changing
them here without a matching ledger change produces payouts the ledger
will not honour.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

BPS_DENOMINATOR = 10_000


class PoolParams(BaseModel):
    """Protocol fee and pool split, all in basis points."""

    protocol_fee_bps: int = Field(
        default=1000,
        ge=0,
        le=5000,
        description="Protocol fee removed from total stake before distribution.",
    )
    opinion_pool_bps: int = Field(
        default=7000,
        ge=0,
        le=BPS_DENOMINATOR,
        description="Share of the distributable pool paid by net backing. The rest funds predictions.",
    )
    jackpot_bps: int = Field(
        default=2000,
        ge=0,
        le=BPS_DENOMINATOR,
        description="Share of the prediction pool set aside for the jackpot draw.",
    )


class LayerWeights(BaseModel):
    """Weights for combining the three layers into combined_bps.

    combined_bps = W * weight + C * prediction + A * ai, range 0-10000.
    """

    weight: int = Field(default=50, ge=0, le=100, description="Layer 1: peer backing.")
    prediction: int = Field(default=30, ge=0, le=100, description="Layer 2: crowd consensus.")
    ai: int = Field(default=20, ge=0, le=100, description="Layer 3: text quality.")

    @model_validator(mode="after")
    def _sum_to_hundred(self) -> "LayerWeights":
        if self.weight + self.prediction + self.ai != 100:
            raise ValueError("layer weights must sum to 100")
        return self


class LayerParams(BaseModel):
    """Per-layer constants."""

    weight_floor: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Minimum weight score any opinion can receive.",
    )
    neutral_score: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Default used when a signal is missing (no weight, rating failure).",
    )
    crowd_score_places: int = Field(
        default=1,
        ge=0,
        le=4,
        description="Decimal places kept on the crowd score.",
    )
    inverse_distance_numerator: int = Field(
        default=1_000_000,
        ge=1000,
        description="Numerator of the prediction-pool weight N / (distance + 1).",
    )


class JackpotParams(BaseModel):
    """Jackpot eligibility."""

    eligible_bps: int = Field(
        default=2000,
        ge=1,
        le=BPS_DENOMINATOR,
        description="Fraction of opinions (closest predictors) eligible for the draw.",
    )
    min_eligible: int = Field(default=1, ge=1, le=100)


class RatingParams(BaseModel):
    """Limits on what is sent to the rating service."""

    max_text_chars: int = Field(
        default=200,
        ge=20,
        le=4000,
        description="Opinion texts are truncated to this many characters.",
    )
    max_batch_size: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Opinions per rating request. Larger sets are split.",
    )
    timeout_sec: float = Field(default=60.0, gt=0, le=600)


class WorkerParams(BaseModel):
    """Settlement worker pool and retry policy."""

    concurrency: int = Field(default=5, ge=1, le=64)
    max_attempts: int = Field(default=3, ge=1, le=20)
    backoff_base_sec: float = Field(
        default=2.0,
        ge=0,
        le=600,
        description="First retry delay. Doubles on each subsequent attempt.",
    )
    poll_interval_sec: float = Field(default=1.0, gt=0, le=60)
    step_timeout_sec: float = Field(default=90.0, gt=0, le=3600)
    claim_lease_sec: int = Field(
        default=900,
        ge=30,
        le=86400,
        description="Claims older than this are treated as abandoned by a dead worker.",
    )


class MonitorParams(BaseModel):
    """Polling cadence for the two discovery monitors."""

    settlement_interval_sec: float = Field(default=60.0, gt=0)
    live_interval_sec: float = Field(default=120.0, gt=0)
    live_debounce_sec: float = Field(default=90.0, ge=0)
    live_min_opinions: int = Field(default=2, ge=1)
    confidence_medium_at: int = Field(default=5, ge=1)
    confidence_high_at: int = Field(default=15, ge=1)
    page_size: int = Field(default=50, ge=1, le=100)
    live_concurrency: int = Field(default=5, ge=1, le=64)

    @model_validator(mode="after")
    def _ordered_thresholds(self) -> "MonitorParams":
        if self.confidence_high_at <= self.confidence_medium_at:
            raise ValueError("confidence_high_at must exceed confidence_medium_at")
        return self


class SettlementParams(BaseModel):
    """Master configuration for all settlement parameters."""

    pools: PoolParams = Field(default_factory=PoolParams)
    layer_weights: LayerWeights = Field(default_factory=LayerWeights)
    layers: LayerParams = Field(default_factory=LayerParams)
    jackpot: JackpotParams = Field(default_factory=JackpotParams)
    rating: RatingParams = Field(default_factory=RatingParams)
    worker: WorkerParams = Field(default_factory=WorkerParams)
    monitor: MonitorParams = Field(default_factory=MonitorParams)

    @model_validator(mode="after")
    def _rating_fits_step(self) -> "SettlementParams":
        # Layer 3 falls back to neutral before the worker gives up on the step
        if self.rating.timeout_sec >= self.worker.step_timeout_sec:
            raise ValueError("rating.timeout_sec must be below worker.step_timeout_sec")
        return self


# Default instance for easy import
DEFAULT_SETTLEMENT_PARAMS = SettlementParams()


def get_settlement_params() -> SettlementParams:
    """Get settlement parameters."""
    return DEFAULT_SETTLEMENT_PARAMS


__all__ = [
    "BPS_DENOMINATOR",
    "PoolParams",
    "LayerWeights",
    "LayerParams",
    "JackpotParams",
    "RatingParams",
    "WorkerParams",
    "MonitorParams",
    "SettlementParams",
    "DEFAULT_SETTLEMENT_PARAMS",
    "get_settlement_params",
]
