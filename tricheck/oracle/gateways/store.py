"""Write side of the market API.

The store is a best-effort mirror of the ledger. Callers log
``StoreWriteError`` as a warning and carry on.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from tricheck.oracle.scoring.types import SettlementResult
from tricheck.shared.enums import ConfidenceTier, MarketState

from .http import GatewayError, JsonHttpClient

logger = logging.getLogger(__name__)


class StoreWriteError(GatewayError):
    """A persistence write was rejected or could not be delivered."""


def settlement_payload(
    result: SettlementResult,
    settlement_hash: str,
) -> Dict[str, Any]:
    """Body of ``POST /internal/markets/{id}/settle``."""
    opinions: List[Dict[str, Any]] = [
        {
            "id": op.id,
            "weight_score": op.weight_score,
            "prediction_score": op.prediction_score,
            "ai_score": op.ai_score,
            "composite_score": op.combined_score,
            "opinion_payout": op.opinion_payout,
            "prediction_payout": op.prediction_payout,
            "jackpot_eligible": op.jackpot_eligible,
            "jackpot_winner": op.jackpot_winner,
            "payout_amount": op.payout_amount,
        }
        for op in result.opinions
    ]
    return {
        "crowd_score": float(result.crowd_score),
        "state": MarketState.SETTLED.value,
        "settlement_hash": settlement_hash,
        "jackpot_amount": result.jackpot_amount,
        "opinions": opinions,
    }


class MarketStoreClient:
    def __init__(self, http: JsonHttpClient):
        self.http = http

    async def persist_settlement(
        self,
        market_id: str,
        result: SettlementResult,
        settlement_hash: str,
    ) -> None:
        await self._post(
            f"/internal/markets/{market_id}/settle",
            settlement_payload(result, settlement_hash),
        )

    async def update_live_sentiment(
        self,
        market_id: str,
        score: int,
        confidence: ConfidenceTier,
    ) -> None:
        await self._post(
            f"/internal/markets/{market_id}/live-sentiment",
            {
                "live_sentiment_score": score,
                "live_sentiment_confidence": int(confidence),
            },
        )

    async def _post(self, path: str, body: Dict[str, Any]) -> None:
        try:
            await self.http.post_json(path, body)
        except GatewayError as e:
            raise StoreWriteError(str(e), e.status_code) from e

    async def close(self) -> None:
        await self.http.close()


__all__ = ["MarketStoreClient", "StoreWriteError", "settlement_payload"]
