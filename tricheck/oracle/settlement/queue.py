"""Durable settlement queue backed by the oracle database.

Delivery rules:
- A job is claimed by at most one worker at a time
- No two jobs for the same market are claimed at the same time
- A failed attempt is retried after ``base * 2^(attempt-1)`` seconds until
  ``max_attempts`` is reached, then parked as ``failed`` for an operator
- A market with a parked failure accepts no new jobs until it is requeued
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, exists, insert, select, update

from tricheck.oracle.config.settlement_params import WorkerParams
from tricheck.oracle.database.dbm import DBM, as_utc, utcnow
from tricheck.oracle.database.schema import SettlementJobRow
from tricheck.shared.enums import JobStatus
from tricheck.shared.logging import log_event

from .jobs import ClaimedJob, SettlementJob

logger = logging.getLogger(__name__)

_jobs = SettlementJobRow.__table__


def backoff_delay(attempt: int, base_sec: float) -> float:
    """Delay before the retry that follows failed attempt ``attempt`` (1-based)."""
    return base_sec * (2 ** max(0, attempt - 1))


class SettlementQueue:
    def __init__(self, dbm: DBM, params: Optional[WorkerParams] = None):
        self.dbm = dbm
        self.params = params or WorkerParams()

    async def enqueue(self, job: SettlementJob, now: Optional[datetime] = None) -> Optional[str]:
        """Persist a job, returning its id.

        Returns None when the market has a failed job awaiting operator
        action. Duplicate pending jobs for a market are accepted; the
        coordinator's journal makes the extra runs no-ops.
        """
        now = now or utcnow()
        if await self.has_failed(job.market_id):
            logger.warning({"enqueue_refused": {"market_id": job.market_id, "reason": "failed job awaiting operator"}})
            return None

        job_id = uuid.uuid4().hex
        await self.dbm.write(
            insert(_jobs).values(
                job_id=job_id,
                market_id=job.market_id,
                payload=job.to_json(),
                status=JobStatus.PENDING.value,
                attempts=0,
                max_attempts=self.params.max_attempts,
                next_run_at=now,
                created_at=now,
            )
        )
        logger.info({"job_enqueued": {"job_id": job_id, "market_id": job.market_id, "opinions": len(job.opinions)}})
        return job_id

    async def claim_next(self, worker_id: str, now: Optional[datetime] = None) -> Optional[ClaimedJob]:
        """Atomically claim the oldest due job, or None if nothing is due."""
        now = now or utcnow()
        token = uuid.uuid4().hex
        candidate = _jobs.alias("candidate")
        inflight = _jobs.alias("inflight")

        next_id = (
            select(candidate.c.job_id)
            .where(
                candidate.c.status == JobStatus.PENDING.value,
                candidate.c.next_run_at <= now,
                ~exists().where(
                    and_(
                        inflight.c.market_id == candidate.c.market_id,
                        inflight.c.status == JobStatus.CLAIMED.value,
                    )
                ),
            )
            .order_by(candidate.c.next_run_at, candidate.c.created_at)
            .limit(1)
            .scalar_subquery()
        )
        claimed = await self.dbm.write(
            update(_jobs)
            .where(_jobs.c.job_id == next_id, _jobs.c.status == JobStatus.PENDING.value)
            .values(
                status=JobStatus.CLAIMED.value,
                claimed_by=worker_id,
                claim_token=token,
                claimed_at=now,
                attempts=_jobs.c.attempts + 1,
            )
        )
        if not claimed:
            return None

        rows = await self.dbm.read(select(_jobs).where(_jobs.c.claim_token == token))
        if not rows:
            return None
        return self._to_claimed(rows[0])

    async def complete(self, job_id: str, now: Optional[datetime] = None) -> None:
        await self._finish(job_id, JobStatus.COMPLETED, now=now)

    async def skip(self, job_id: str, reason: str, now: Optional[datetime] = None) -> None:
        """Close a job without settling (e.g. the market was already settled)."""
        await self._finish(job_id, JobStatus.SKIPPED, error=reason, now=now)

    async def fail(
        self,
        claimed: ClaimedJob,
        error: str,
        retryable: bool = True,
        now: Optional[datetime] = None,
    ) -> JobStatus:
        """Record a failed attempt and schedule the retry or park the job.

        Returns:
            The job's new status (pending or failed)
        """
        now = now or utcnow()
        if retryable and claimed.attempts < claimed.max_attempts:
            delay = backoff_delay(claimed.attempts, self.params.backoff_base_sec)
            await self.dbm.write(
                update(_jobs)
                .where(_jobs.c.job_id == claimed.job_id)
                .values(
                    status=JobStatus.PENDING.value,
                    next_run_at=now + timedelta(seconds=delay),
                    claimed_by=None,
                    claim_token=None,
                    claimed_at=None,
                    last_error=error,
                )
            )
            logger.warning({
                "job_retry_scheduled": {
                    "job_id": claimed.job_id,
                    "market_id": claimed.market_id,
                    "attempt": claimed.attempts,
                    "max_attempts": claimed.max_attempts,
                    "delay_sec": delay,
                    "error": error,
                }
            })
            return JobStatus.PENDING

        await self._finish(claimed.job_id, JobStatus.FAILED, error=error, now=now)
        record = {
            "job_failed": {
                "job_id": claimed.job_id,
                "market_id": claimed.market_id,
                "attempts": claimed.attempts,
                "error": error,
                "action": "operator requeue required",
            }
        }
        logger.error(record)
        log_event(record)
        return JobStatus.FAILED

    async def release_stale_claims(self, lease_sec: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Return claims older than the lease to pending (crashed workers).

        The attempt that was in flight stays counted.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=lease_sec if lease_sec is not None else self.params.claim_lease_sec)
        released = await self.dbm.write(
            update(_jobs)
            .where(_jobs.c.status == JobStatus.CLAIMED.value, _jobs.c.claimed_at < cutoff)
            .values(
                status=JobStatus.PENDING.value,
                claimed_by=None,
                claim_token=None,
                claimed_at=None,
                next_run_at=now,
                last_error="claim lease expired",
            )
        )
        if released:
            logger.warning({"stale_claims_released": released})
        return released

    async def has_failed(self, market_id: str) -> bool:
        rows = await self.dbm.read(
            select(_jobs.c.job_id)
            .where(_jobs.c.market_id == market_id, _jobs.c.status == JobStatus.FAILED.value)
            .limit(1)
        )
        return bool(rows)

    async def list_failed(self) -> List[ClaimedJob]:
        rows = await self.dbm.read(
            select(_jobs)
            .where(_jobs.c.status == JobStatus.FAILED.value)
            .order_by(_jobs.c.completed_at)
        )
        return [self._to_claimed(r) for r in rows]

    async def requeue(self, job_id: str, now: Optional[datetime] = None) -> bool:
        """Operator action: give a failed job a fresh set of attempts."""
        now = now or utcnow()
        count = await self.dbm.write(
            update(_jobs)
            .where(_jobs.c.job_id == job_id, _jobs.c.status == JobStatus.FAILED.value)
            .values(
                status=JobStatus.PENDING.value,
                attempts=0,
                next_run_at=now,
                completed_at=None,
            )
        )
        if count:
            logger.info({"job_requeued": job_id})
        return bool(count)

    async def get(self, job_id: str) -> Optional[ClaimedJob]:
        rows = await self.dbm.read(select(_jobs).where(_jobs.c.job_id == job_id))
        return self._to_claimed(rows[0]) if rows else None

    async def pending_count(self, now: Optional[datetime] = None) -> int:
        """Jobs that are due or in flight. Future retries are not counted."""
        now = now or utcnow()
        rows = await self.dbm.read(
            select(_jobs.c.job_id).where(
                ((_jobs.c.status == JobStatus.PENDING.value) & (_jobs.c.next_run_at <= now))
                | (_jobs.c.status == JobStatus.CLAIMED.value)
            )
        )
        return len(rows)

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        values = {
            "status": status.value,
            "completed_at": now or utcnow(),
            "claim_token": None,
        }
        if error is not None:
            values["last_error"] = error
        await self.dbm.write(update(_jobs).where(_jobs.c.job_id == job_id).values(**values))

    @staticmethod
    def _to_claimed(row) -> ClaimedJob:
        return ClaimedJob(
            job_id=row["job_id"],
            market_id=row["market_id"],
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            next_run_at=as_utc(row["next_run_at"]),
            claimed_by=row["claimed_by"],
            last_error=row["last_error"],
            job=SettlementJob.from_json(row["payload"]),
        )


__all__ = ["SettlementQueue", "backoff_delay"]
