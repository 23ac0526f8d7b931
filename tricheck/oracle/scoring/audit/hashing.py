"""Deterministic hashing for settlement inputs and outputs.

Two runs over the same snapshot with the same AI scores and jackpot draw
must produce the same settlement hash. The hash travels with the persisted
settlement so stores and the ledger can be cross-checked.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Sequence

from ..types import Opinion, SettlementResult


def _serialize_value(val: Any) -> Any:
    """Serialize a value for deterministic hashing."""
    if val is None:
        return None
    elif isinstance(val, Decimal):
        return str(val)
    elif isinstance(val, datetime):
        return val.isoformat()
    elif isinstance(val, dict):
        return {k: _serialize_value(v) for k, v in sorted(val.items())}
    elif isinstance(val, (list, tuple)):
        return [_serialize_value(v) for v in val]
    elif isinstance(val, (int, float, str, bool)):
        return val
    else:
        return str(val)


def compute_hash(data: Dict[str, Any]) -> str:
    """Compute deterministic SHA256 hash of a dictionary.

    Returns:
        Hex-encoded SHA256 hash (64 characters)
    """
    serialized = _serialize_value(data)
    canonical = json.dumps(serialized, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_text(text: str) -> str:
    """SHA256 hex digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_snapshot_hash(
    market_id: str,
    opinions: Sequence[Opinion],
    total_stake: int,
) -> str:
    """Hash of the scorer's inputs for one market."""
    payload = {
        "market_id": market_id,
        "total_stake": total_stake,
        "opinions": [
            op.model_dump() for op in sorted(opinions, key=lambda o: o.id)
        ],
    }
    return compute_hash(payload)


def compute_settlement_hash(market_id: str, result: SettlementResult) -> str:
    """Hash of everything a settlement writes.

    Covers per-opinion scores and payouts, the pool split and the jackpot
    outcome. Opinions are hashed in id order.
    """
    payload = {
        "market_id": market_id,
        "crowd_score": result.crowd_score,
        "pools": result.pools.model_dump(),
        "jackpot": {
            "winner_id": result.jackpot_winner_id,
            "amount": result.jackpot_amount,
        },
        "opinions": [
            {
                "id": op.id,
                "weight_score": op.weight_score,
                "prediction_score": op.prediction_score,
                "ai_score": op.ai_score,
                "combined_bps": op.combined_bps,
                "opinion_payout": op.opinion_payout,
                "prediction_payout": op.prediction_payout,
                "payout_amount": op.payout_amount,
            }
            for op in sorted(result.opinions, key=lambda o: o.id)
        ],
    }
    return compute_hash(payload)


__all__ = [
    "compute_hash",
    "hash_text",
    "compute_snapshot_hash",
    "compute_settlement_hash",
]
