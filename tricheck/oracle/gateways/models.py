"""Wire models for the market query API.

Amounts arrive as strings or numbers depending on the API build; both are
coerced to integers. Opinion fields missing on the wire take the same
defaults the market API applies when it creates them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tricheck.oracle.scoring.types import Opinion
from tricheck.shared.enums import MarketState


def _as_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, str):
        return int(value.split(".")[0])
    return int(value)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MarketSummary(BaseModel):
    """One row of ``GET /markets``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    statement: str = ""
    state: MarketState
    closes_at: datetime
    total_stake: int = 0
    staker_count: int = 0
    live_scored_at: Optional[datetime] = None

    @field_validator("total_stake", "staker_count", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> int:
        return _as_int(v)

    @field_validator("closes_at", "live_scored_at", mode="after")
    @classmethod
    def _coerce_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc(v)

    def is_past_close(self, now: datetime) -> bool:
        return now >= self.closes_at


class MarketDetail(MarketSummary):
    """``GET /markets/{id}`` with the full opinion set."""

    opinions: List[Opinion] = Field(default_factory=list)

    @field_validator("opinions", mode="before")
    @classmethod
    def _normalize_opinions(cls, v: Any) -> List[Any]:
        return [raw if isinstance(raw, Opinion) else opinion_from_wire(raw) for raw in (v or [])]


def opinion_from_wire(raw: dict) -> dict:
    """Map an API opinion record onto ``Opinion`` fields.

    ``opinion_score`` and ``market_prediction`` fall back to the legacy
    single ``prediction`` field, then to 50. ``backing_total`` falls back to
    the author's stake.
    """
    amount = _as_int(raw.get("amount"))
    legacy = raw.get("prediction")
    opinion_score = raw.get("opinion_score")
    market_prediction = raw.get("market_prediction")
    backing = _as_int(raw.get("backing_total"))
    return {
        "id": str(raw.get("id", "")),
        "staker": raw.get("staker_address") or raw.get("staker") or "",
        "amount": amount,
        "opinion_text": raw.get("opinion_text") or "",
        "opinion_score": opinion_score if opinion_score is not None else (legacy if legacy is not None else 50),
        "market_prediction": market_prediction if market_prediction is not None else (legacy if legacy is not None else 50),
        "backing_total": backing or amount,
        "slashing_total": _as_int(raw.get("slashing_total")),
    }


__all__ = ["MarketSummary", "MarketDetail", "opinion_from_wire"]
