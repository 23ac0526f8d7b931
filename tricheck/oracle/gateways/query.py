"""Read side of the market API: market listings and opinion snapshots."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError

from tricheck.shared.enums import MarketState

from .http import GatewayError, JsonHttpClient
from .models import MarketDetail, MarketSummary

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGES = 100


class MarketQueryClient:
    """Lists markets by state and fetches one market with its opinions."""

    def __init__(self, http: JsonHttpClient, page_size: int = DEFAULT_PAGE_SIZE):
        self.http = http
        self.page_size = page_size

    async def list_markets(self, state: MarketState) -> List[MarketSummary]:
        """All markets in ``state``, following ``pagination.hasMore``.

        Rows that fail validation are logged and dropped; one bad row must
        not hide the rest of the page.
        """
        markets: List[MarketSummary] = []
        offset = 0
        for _ in range(MAX_PAGES):
            payload = await self.http.get_json(
                "/markets",
                params={"state": state.value, "limit": self.page_size, "offset": offset},
            )
            rows = _data(payload)
            if not isinstance(rows, list):
                raise GatewayError(f"unexpected /markets payload: {type(rows).__name__}")
            for row in rows:
                try:
                    markets.append(MarketSummary.model_validate(row))
                except PydanticValidationError as e:
                    logger.warning({
                        "market_row_invalid": {
                            "id": row.get("id") if isinstance(row, dict) else None,
                            "error": str(e).splitlines()[0],
                        }
                    })
            if not _has_more(payload) or not rows:
                break
            offset += len(rows)
        return markets

    async def get_market(self, market_id: str) -> MarketDetail:
        payload = await self.http.get_json(f"/markets/{market_id}")
        data = _data(payload)
        if not isinstance(data, dict):
            raise GatewayError(f"unexpected /markets/{market_id} payload")
        try:
            return MarketDetail.model_validate(data)
        except PydanticValidationError as e:
            raise GatewayError(f"market {market_id} failed validation: {e}") from e

    async def close(self) -> None:
        await self.http.close()


def _data(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _has_more(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    pagination: Optional[dict] = payload.get("pagination")
    return bool(pagination and pagination.get("hasMore"))


__all__ = ["MarketQueryClient", "DEFAULT_PAGE_SIZE"]
