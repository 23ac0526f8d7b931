"""Per-market step journal and computed-settlement snapshots.

Ledger and store writes are not one transaction, so each applied step is
journaled. A retry skips journaled steps and reuses the stored snapshot, so
AI scores and the jackpot winner are identical across partial attempts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Set

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from tricheck.oracle.database.dbm import DBM, utcnow
from tricheck.oracle.database.schema import SettlementSnapshotRow, SettlementStepRow
from tricheck.oracle.scoring.types import MarketSentiment, SettlementResult
from tricheck.shared.enums import SettlementStep

logger = logging.getLogger(__name__)

_steps = SettlementStepRow.__table__
_snapshots = SettlementSnapshotRow.__table__


def step_key(step: SettlementStep, opinion_id: Optional[str] = None) -> str:
    """Journal key, e.g. ``settle_opinion:op-1`` or ``finalize_settlement``."""
    return f"{step.value}:{opinion_id}" if opinion_id is not None else step.value


@dataclass(frozen=True)
class SettlementSnapshot:
    result: SettlementResult
    sentiment: MarketSentiment
    settlement_hash: str


class SettlementJournal:
    def __init__(self, dbm: DBM):
        self.dbm = dbm

    async def completed_steps(self, market_id: str) -> Set[str]:
        rows = await self.dbm.read(
            select(_steps.c.step_key).where(_steps.c.market_id == market_id)
        )
        return {r["step_key"] for r in rows}

    async def mark_done(self, market_id: str, key: str, detail: Optional[str] = None) -> None:
        """Record a step. Recording an already-recorded step is a no-op."""
        try:
            await self.dbm.write(
                insert(_steps).values(
                    market_id=market_id,
                    step_key=key,
                    completed_at=utcnow(),
                    detail=detail,
                )
            )
        except IntegrityError:
            logger.debug({"journal_step_exists": {"market_id": market_id, "step": key}})

    async def load_snapshot(self, market_id: str) -> Optional[SettlementSnapshot]:
        rows = await self.dbm.read(select(_snapshots).where(_snapshots.c.market_id == market_id))
        if not rows:
            return None
        row = rows[0]
        return SettlementSnapshot(
            result=SettlementResult.model_validate_json(row["result"]),
            sentiment=MarketSentiment.model_validate_json(row["sentiment"]),
            settlement_hash=row["settlement_hash"],
        )

    async def save_snapshot(self, market_id: str, snapshot: SettlementSnapshot) -> SettlementSnapshot:
        """Store the first computed settlement for a market.

        If another attempt stored one first, that one wins and is returned.
        """
        try:
            await self.dbm.write(
                insert(_snapshots).values(
                    market_id=market_id,
                    result=snapshot.result.model_dump_json(),
                    sentiment=snapshot.sentiment.model_dump_json(),
                    settlement_hash=snapshot.settlement_hash,
                    created_at=utcnow(),
                )
            )
            return snapshot
        except IntegrityError:
            existing = await self.load_snapshot(market_id)
            if existing is None:
                raise
            return existing


__all__ = ["SettlementJournal", "SettlementSnapshot", "step_key"]
