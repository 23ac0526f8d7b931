"""Dual-pool payout and jackpot selection.

Pool split (basis points, integer floor at each step):

    protocol_fee        = total × fee_bps
    distributable       = total − protocol_fee
    opinion_pool        = distributable × opinion_bps          (70%)
    prediction_pool     = distributable − opinion_pool         (30%)
    jackpot_pool        = prediction_pool × jackpot_bps        (6% of distributable)
    proportional_pool   = prediction_pool − jackpot_pool       (24% of distributable)

Opinion pool is paid pro rata to max(0, net_backing). Proportional
prediction pool is paid pro rata to N / (distance + 1). Every share is
floored, so each pool pays out at most its amount and leaves < n units of
dust. A pool whose weights sum to zero is split equally instead.
"""

from __future__ import annotations

import random
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from tricheck.oracle.config.settlement_params import (
    BPS_DENOMINATOR,
    SettlementParams,
    get_settlement_params,
)

from .determinism import apply_bps, floor_int, pro_rata
from .layers import prediction_distance
from .types import Opinion, PoolSplit


def split_pools(total_stake: int, params: SettlementParams | None = None) -> PoolSplit:
    params = params or get_settlement_params()
    p = params.pools

    protocol_fee = apply_bps(total_stake, p.protocol_fee_bps)
    distributable = total_stake - protocol_fee
    opinion_pool = apply_bps(distributable, p.opinion_pool_bps)
    prediction_pool = distributable - opinion_pool
    jackpot_pool = apply_bps(prediction_pool, p.jackpot_bps)

    return PoolSplit(
        total_stake=total_stake,
        protocol_fee=protocol_fee,
        distributable_pool=distributable,
        opinion_pool=opinion_pool,
        prediction_pool=prediction_pool,
        jackpot_pool=jackpot_pool,
        proportional_prediction_pool=prediction_pool - jackpot_pool,
    )


def distribute(weights: Dict[str, int], pool: int) -> Dict[str, int]:
    """Split ``pool`` pro rata to ``weights``, equal shares if all weights are zero."""
    if not weights:
        return {}
    total = sum(weights.values())
    if total <= 0:
        share = pool // len(weights)
        return {key: share for key in weights}
    return {key: pro_rata(weight, pool, total) for key, weight in weights.items()}


def opinion_pool_weights(opinions: Sequence[Opinion]) -> Dict[str, int]:
    """Non-positive net backing earns nothing from the opinion pool."""
    return {op.id: max(0, op.net_backing) for op in opinions}


def prediction_pool_weights(
    opinions: Sequence[Opinion],
    crowd_score: Decimal,
    params: SettlementParams | None = None,
) -> Dict[str, int]:
    """Inverse-distance weight floor(N / (|prediction − crowd| + 1))."""
    params = params or get_settlement_params()
    numerator = Decimal(params.layers.inverse_distance_numerator)
    return {
        op.id: floor_int(numerator / (prediction_distance(op, crowd_score) + 1))
        for op in opinions
    }


def jackpot_eligible_ids(
    opinions: Sequence[Opinion],
    crowd_score: Decimal,
    params: SettlementParams | None = None,
) -> List[str]:
    """Closest predictors to the crowd score, nearest first.

    Count is ceil(n × eligible_bps), at least ``min_eligible``, at most n.
    Ties keep input order.
    """
    if not opinions:
        return []
    params = params or get_settlement_params()
    j = params.jackpot

    n = len(opinions)
    cutoff = -(-n * j.eligible_bps // BPS_DENOMINATOR)
    cutoff = min(n, max(j.min_eligible, cutoff))

    ranked = sorted(
        enumerate(opinions),
        key=lambda pair: (prediction_distance(pair[1], crowd_score), pair[0]),
    )
    return [op.id for _, op in ranked[:cutoff]]


def draw_jackpot_winner(
    eligible_ids: Sequence[str],
    rng: Optional[random.Random] = None,
) -> Optional[str]:
    """Uniform draw among eligible opinions. None when nobody is eligible."""
    if not eligible_ids:
        return None
    rng = rng or random.SystemRandom()
    return eligible_ids[rng.randrange(len(eligible_ids))]


def payout_shares(payouts: Dict[str, int]) -> Dict[str, Decimal]:
    """Fraction of all payouts per opinion, reporting only."""
    total = sum(payouts.values())
    if total <= 0:
        return {key: Decimal("0") for key in payouts}
    return {
        key: (Decimal(amount) / Decimal(total)).quantize(Decimal("0.000001"))
        for key, amount in payouts.items()
    }


def compute_dual_pool(
    opinions: Sequence[Opinion],
    crowd_score: Decimal,
    pools: PoolSplit,
    params: SettlementParams | None = None,
) -> Tuple[Dict[str, int], Dict[str, int], int, int]:
    """Opinion and prediction payouts for the whole set.

    Returns:
        (opinion_payouts, prediction_payouts, total_net_backing, total_prediction_weight)
    """
    op_weights = opinion_pool_weights(opinions)
    pr_weights = prediction_pool_weights(opinions, crowd_score, params)
    return (
        distribute(op_weights, pools.opinion_pool),
        distribute(pr_weights, pools.proportional_prediction_pool),
        sum(op_weights.values()),
        sum(pr_weights.values()),
    )


__all__ = [
    "split_pools",
    "distribute",
    "opinion_pool_weights",
    "prediction_pool_weights",
    "jackpot_eligible_ids",
    "draw_jackpot_winner",
    "payout_shares",
    "compute_dual_pool",
]
