"""Per-opinion layer scores.

Layer 1 (weight): net peer backing rescaled across the set into
[floor, 100]. Relative to the set, not to an absolute threshold.

Layer 2 (prediction): linear accuracy of ``market_prediction`` against the
crowd score. 100 for an exact hit, 0 at 100 points away.

Layer 3 (ai) lives in the scorer because it needs the rating service.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Sequence

from tricheck.oracle.config.settlement_params import SettlementParams, get_settlement_params

from .determinism import clamp, div_round_half_up, round_half_up
from .types import Opinion


def calculate_weight_scores(
    opinions: Sequence[Opinion],
    params: SettlementParams | None = None,
) -> Dict[str, int]:
    """Rescale net backing into [floor, 100].

    score = max(floor, round((net - min) / range × (100 - floor)) + floor)

    ``range`` is floored to 1 so an all-equal set scores ``floor`` everywhere.
    """
    if not opinions:
        return {}
    params = params or get_settlement_params()
    floor = params.layers.weight_floor
    span = 100 - floor

    nets = {op.id: op.net_backing for op in opinions}
    min_net = min(nets.values())
    max_net = max(nets.values())
    value_range = max(max_net - min_net, 1)

    scores: Dict[str, int] = {}
    for opinion_id, net in nets.items():
        scaled = div_round_half_up((net - min_net) * span, value_range)
        scores[opinion_id] = clamp(scaled + floor, floor, 100)
    return scores


def prediction_distance(opinion: Opinion, crowd_score: Decimal) -> Decimal:
    return abs(Decimal(opinion.market_prediction) - crowd_score)


def calculate_prediction_scores(
    opinions: Sequence[Opinion],
    crowd_score: Decimal,
) -> Dict[str, int]:
    """score = max(0, 100 - round(|market_prediction - crowd_score|))"""
    return {
        op.id: max(0, 100 - round_half_up(prediction_distance(op, crowd_score)))
        for op in opinions
    }


def combine_layers(
    weight_score: int,
    prediction_score: int,
    ai_score: int,
    params: SettlementParams | None = None,
) -> tuple[int, int]:
    """Blend the three layers.

    Returns:
        (combined_bps in 0-10000, combined_score in 0-100)
    """
    params = params or get_settlement_params()
    w = params.layer_weights
    combined_bps = weight_score * w.weight + prediction_score * w.prediction + ai_score * w.ai
    return combined_bps, div_round_half_up(combined_bps, 100)


__all__ = [
    "calculate_weight_scores",
    "prediction_distance",
    "calculate_prediction_scores",
    "combine_layers",
]
