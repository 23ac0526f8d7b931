"""Crowd consensus computation.

The crowd score is the stake-weighted mean of every opinion's self-rated
agreement score. It is the target that Layer 2 measures predictions against.

Algorithm:
1. weight_i = amount_i + backing_total_i
2. crowd = Σ(opinion_score_i × weight_i) / Σ(weight_i)
3. Round to ``crowd_score_places`` (half-up)
4. No weight at all → neutral score (50)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from tricheck.oracle.config.settlement_params import SettlementParams, get_settlement_params

from .determinism import deterministic_weighted_mean, round_places
from .types import Opinion


def crowd_weight(opinion: Opinion) -> int:
    """Volume behind an opinion: own stake plus everything backing it."""
    return opinion.amount + opinion.backing_total


def calculate_crowd_score(
    opinions: Sequence[Opinion],
    params: SettlementParams | None = None,
) -> Decimal:
    """Volume-weighted mean of ``opinion_score``.

    Args:
        opinions: The market's opinion set
        params: Settlement parameters (uses defaults if None)

    Returns:
        Crowd score in [0, 100]
    """
    params = params or get_settlement_params()
    neutral = Decimal(params.layers.neutral_score)

    items = [
        (op.id, Decimal(op.opinion_score), Decimal(crowd_weight(op)))
        for op in opinions
    ]
    mean = deterministic_weighted_mean(items, default=neutral)
    return round_places(mean, params.layers.crowd_score_places)


__all__ = ["crowd_weight", "calculate_crowd_score"]
