"""Settlement queue, step journal and computed-result snapshots."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SettlementJobRow(Base):
    """One queued settlement for one market.

    A market may have several rows over time (duplicate enqueues across
    monitor cycles); the queue never has two of them claimed at once.
    """

    __tablename__ = "settlement_job"

    job_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Unique job identifier (UUID hex)",
    )
    market_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Market being settled",
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON-encoded SettlementJob (statement, opinions, total stake)",
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending",
        comment="Status: pending, claimed, completed, failed, skipped",
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of times this job has been claimed",
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )
    next_run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Earliest time the job may be claimed (UTC)",
    )
    claimed_by: Mapped[str | None] = mapped_column(
        String(64),
        comment="Worker ID holding the claim",
    )
    claim_token: Mapped[str | None] = mapped_column(
        String(64),
        comment="Per-claim token used to read back the claimed row",
    )
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_settlement_job_status_next_run", "status", "next_run_at"),
        Index("ix_settlement_job_market", "market_id"),
    )


class SettlementStepRow(Base):
    """A settlement step that has been applied and must not be repeated."""

    __tablename__ = "settlement_step"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[str] = mapped_column(String(128), nullable=False)
    step_key: Mapped[str] = mapped_column(
        String(192),
        nullable=False,
        comment="Step name, with ':<opinion id>' for per-opinion steps",
    )
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    detail: Mapped[str | None] = mapped_column(
        Text,
        comment="Ledger reference or other step output",
    )

    __table_args__ = (
        UniqueConstraint("market_id", "step_key", name="uq_settlement_step_market_step"),
    )


class SettlementSnapshotRow(Base):
    """The computed settlement reused by every retry of a market."""

    __tablename__ = "settlement_snapshot"

    market_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    result: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON-encoded SettlementResult",
    )
    sentiment: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON-encoded MarketSentiment recorded on the ledger",
    )
    settlement_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


__all__ = ["SettlementJobRow", "SettlementStepRow", "SettlementSnapshotRow"]
