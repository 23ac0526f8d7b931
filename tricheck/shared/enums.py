from __future__ import annotations

from enum import Enum, IntEnum


class MarketState(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"
    SCORED = "Scored"
    # Legacy ledger state, still reported by older market accounts
    AWAITING_RANDOMNESS = "AwaitingRandomness"
    SETTLED = "Settled"


class ConfidenceTier(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class JobStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SettlementStep(str, Enum):
    """Journaled settlement steps in the order the coordinator runs them."""

    RECORD_SENTIMENT = "record_sentiment"
    RECORD_AI_SCORE = "record_ai_score"
    SETTLE_OPINION = "settle_opinion"
    FINALIZE_SETTLEMENT = "finalize_settlement"
    CLAIM_PAYOUT = "claim_payout"
    CLAIM_JACKPOT = "claim_jackpot"
    PERSIST_SETTLEMENT = "persist_settlement"
    COMPLETE = "complete"


__all__ = ["MarketState", "ConfidenceTier", "JobStatus", "SettlementStep"]
