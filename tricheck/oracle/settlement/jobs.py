"""Settlement job record.

A job carries a frozen snapshot of one market at close: the statement, the
full opinion set and the total escrowed stake. Workers never re-read the
market API, so every retry scores exactly the same inputs.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from tricheck.oracle.scoring.types import Opinion, ValidationError
from tricheck.oracle.scoring.validation import validate_opinion_set, validate_total_stake
from tricheck.shared.enums import JobStatus


class SettlementJob(BaseModel):
    """Payload of one queued settlement."""

    model_config = ConfigDict(frozen=True)

    market_id: str = Field(min_length=1)
    statement: str = ""
    opinions: List[Opinion] = Field(default_factory=list)
    total_stake: int

    @field_validator("opinions", mode="before")
    @classmethod
    def _check_opinions(cls, v):
        return validate_opinion_set(v or [])

    @field_validator("total_stake", mode="before")
    @classmethod
    def _check_total_stake(cls, v):
        return validate_total_stake(v)

    @classmethod
    def build(
        cls,
        market_id: str,
        statement: str,
        opinions: list,
        total_stake: int,
    ) -> "SettlementJob":
        """Validated constructor that raises the scorer's ``ValidationError``."""
        try:
            return cls(
                market_id=market_id,
                statement=statement,
                opinions=opinions,
                total_stake=total_stake,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"invalid settlement job for {market_id}: {e}") from e

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> "SettlementJob":
        try:
            return cls.model_validate_json(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(f"corrupt settlement job payload: {e}") from e


class ClaimedJob(BaseModel):
    """A job as handed to a worker."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    market_id: str
    status: JobStatus
    attempts: int
    max_attempts: int
    next_run_at: datetime
    claimed_by: Optional[str] = None
    last_error: Optional[str] = None
    job: SettlementJob

    @property
    def is_last_attempt(self) -> bool:
        return self.attempts >= self.max_attempts


__all__ = ["SettlementJob", "ClaimedJob"]
