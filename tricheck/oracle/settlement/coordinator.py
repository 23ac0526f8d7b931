"""Settlement coordinator.

Drains the durable queue with a fixed pool of asyncio workers. For each
claimed job:

    1. market-level sentiment (display + ledger record)
    2. full triple-check computation, stored as the market's snapshot
    3. ordered ledger instructions, each journaled once applied
    4. best-effort mirror to the store, retried on later enqueues until it lands
    5. settlement report

A retry resumes from the journal and reuses the snapshot, so no ledger
instruction is issued twice with different values.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import socket
import time
from typing import Any, Awaitable, Callable, List, Optional, Set

from tricheck.oracle.config.settlement_params import WorkerParams
from tricheck.oracle.gateways.ledger import (
    DuplicateInstructionError,
    LedgerError,
    LedgerReceipt,
    MarketAlreadySettledError,
    SettlementLedger,
)
from tricheck.oracle.gateways.store import MarketStoreClient, StoreWriteError
from tricheck.oracle.scoring.audit.hashing import (
    compute_settlement_hash,
    compute_snapshot_hash,
    hash_text,
)
from tricheck.oracle.scoring.audit.report import SettlementAuditLogger
from tricheck.oracle.scoring.determinism import round_half_up
from tricheck.oracle.scoring.scorer import TripleCheckScorer
from tricheck.oracle.scoring.types import Opinion, ValidationError
from tricheck.shared.enums import JobStatus, MarketState, SettlementStep

from .jobs import ClaimedJob, SettlementJob
from .journal import SettlementJournal, SettlementSnapshot, step_key
from .queue import SettlementQueue

logger = logging.getLogger(__name__)


class SettlementStepTimeout(Exception):
    """A single settlement step exceeded the step timeout."""


class SettlementCoordinator:
    def __init__(
        self,
        scorer: TripleCheckScorer,
        queue: SettlementQueue,
        journal: SettlementJournal,
        ledger: SettlementLedger,
        store: Optional[MarketStoreClient] = None,
        params: Optional[WorkerParams] = None,
        audit: Optional[SettlementAuditLogger] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the coordinator.

        Args:
            scorer: Shared scorer (stateless)
            queue: Durable settlement queue
            journal: Step journal and snapshot store
            ledger: Authoritative settlement ledger
            store: Market API write side (skipped if None)
            params: Worker pool parameters (uses scorer params if None)
            audit: Audit logger for the report and hashes
            rng: Jackpot randomness (scorer default if None)
        """
        self.scorer = scorer
        self.queue = queue
        self.journal = journal
        self.ledger = ledger
        self.store = store
        self.params = params or scorer.params.worker
        self.audit = audit or SettlementAuditLogger()
        self.rng = rng
        self._stop = asyncio.Event()
        self._workers: List[asyncio.Task] = []

    # ── Queue front door ────────────────────────────────────────────────────

    async def queue_market_for_settlement(
        self,
        market_id: str,
        statement: str,
        opinions: List[Opinion],
        total_stake: int,
    ) -> Optional[str]:
        """Validate and enqueue one market. Returns the job id, or None if refused.

        A market this oracle already settled gets no new job. If its store
        mirror never landed, the write is retried here instead.

        Raises:
            ValidationError: If the snapshot is malformed
        """
        job = SettlementJob.build(market_id, statement, opinions, total_stake)
        done = await self.journal.completed_steps(market_id)
        if SettlementStep.COMPLETE.value in done:
            logger.debug({"enqueue_skipped_settled": {"market_id": market_id}})
            await self._retry_store_mirror(market_id, done)
            return None
        return await self.queue.enqueue(job)

    # ── Worker pool ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn ``concurrency`` workers after reclaiming crashed claims."""
        if self._workers:
            return
        await self.queue.release_stale_claims()
        self._stop.clear()
        base = f"{socket.gethostname()}-{os.getpid()}"
        self._workers = [
            asyncio.create_task(self._worker_loop(f"{base}-w{i}"), name=f"settlement-worker-{i}")
            for i in range(self.params.concurrency)
        ]
        logger.info({"settlement_workers_started": self.params.concurrency})

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop claiming and wait for in-flight jobs to finish."""
        self._stop.set()
        if not self._workers:
            return
        done, pending = await asyncio.wait(self._workers, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._workers = []
        logger.info({"settlement_workers_stopped": {"finished": len(done), "cancelled": len(pending)}})

    async def drain(self) -> int:
        """Process every due job with the full pool, then return.

        Retries scheduled in the future are left in the queue.

        Returns:
            Number of jobs processed
        """
        base = f"{socket.gethostname()}-{os.getpid()}-drain"
        counts = await asyncio.gather(*(
            self._drain_worker(f"{base}{i}") for i in range(self.params.concurrency)
        ))
        return sum(counts)

    async def _drain_worker(self, worker_id: str) -> int:
        processed = 0
        while True:
            claimed = await self.queue.claim_next(worker_id)
            if claimed is None:
                return processed
            await self.process(claimed)
            processed += 1

    async def _worker_loop(self, worker_id: str) -> None:
        while not self._stop.is_set():
            try:
                claimed = await self.queue.claim_next(worker_id)
            except Exception as e:
                logger.error({"claim_failed": {"worker": worker_id, "error": f"{type(e).__name__}: {e}"}})
                claimed = None
            if claimed is None:
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.params.poll_interval_sec)
                except asyncio.TimeoutError:
                    pass
                continue
            await self.process(claimed)

    # ── One job ─────────────────────────────────────────────────────────────

    async def process(self, claimed: ClaimedJob) -> JobStatus:
        """Run one claimed job and report the outcome to the queue."""
        market_id = claimed.market_id
        try:
            await self.settle(claimed)
        except MarketAlreadySettledError as e:
            logger.warning({"settlement_skipped": {"job_id": claimed.job_id, "market_id": market_id, "reason": str(e)}})
            await self.queue.skip(claimed.job_id, str(e))
            return JobStatus.SKIPPED
        except ValidationError as e:
            self.audit.log_error("settlement_invalid", str(e), {"job_id": claimed.job_id, "market_id": market_id})
            return await self.queue.fail(claimed, str(e), retryable=False)
        except LedgerError as e:
            self.audit.log_error("settlement_ledger_error", str(e), {"job_id": claimed.job_id, "market_id": market_id})
            return await self.queue.fail(claimed, f"{type(e).__name__}: {e}", retryable=e.retryable)
        except Exception as e:
            logger.exception({"settlement_error": {"job_id": claimed.job_id, "market_id": market_id}})
            return await self.queue.fail(claimed, f"{type(e).__name__}: {e}", retryable=True)

        await self.queue.complete(claimed.job_id)
        return JobStatus.COMPLETED

    async def settle(self, claimed: ClaimedJob) -> Optional[SettlementSnapshot]:
        """Settle the job's market, resuming from the journal.

        Returns:
            The snapshot written to the ledger, or None when the market was
            already completed by an earlier job

        Raises:
            MarketAlreadySettledError: The ledger shows the market settled
                and this oracle never started settling it
        """
        job = claimed.job
        market_id = job.market_id
        started = time.monotonic()

        done = await self.journal.completed_steps(market_id)
        if SettlementStep.COMPLETE.value in done:
            logger.info({"settlement_noop": {"job_id": claimed.job_id, "market_id": market_id}})
            await self._retry_store_mirror(market_id, done)
            return None

        self.audit.log_settlement_start(
            claimed.job_id,
            market_id,
            claimed.attempts,
            compute_snapshot_hash(market_id, job.opinions, job.total_stake),
        )

        state = await self._timed(self.ledger.market_state(market_id), "market_state", market_id)
        started_here = SettlementStep.RECORD_SENTIMENT.value in done
        if state == MarketState.SETTLED and not started_here:
            raise MarketAlreadySettledError(f"market {market_id} is already settled on the ledger")

        snapshot = await self._snapshot(job)
        await self._write_ledger(market_id, snapshot, done, state)
        await self._persist(market_id, snapshot)
        await self.journal.mark_done(market_id, SettlementStep.COMPLETE.value, snapshot.settlement_hash)

        self.audit.log_settlement_complete(
            claimed.job_id,
            market_id,
            snapshot.result,
            snapshot.settlement_hash,
            time.monotonic() - started,
        )
        self.audit.log_report(job.statement, snapshot.result)
        return snapshot

    async def _snapshot(self, job: SettlementJob) -> SettlementSnapshot:
        existing = await self.journal.load_snapshot(job.market_id)
        if existing is not None:
            logger.info({"settlement_snapshot_reused": {"market_id": job.market_id, "hash": existing.settlement_hash[:16]}})
            return existing

        sentiment = await self._timed(
            self.scorer.analyze_market_sentiment(job.statement, job.opinions),
            "analyze_market_sentiment",
            job.market_id,
        )
        result = await self._timed(
            self.scorer.compute_triple_check_scores(
                job.statement,
                job.opinions,
                job.total_stake,
                rng=self.rng,
            ),
            "compute_triple_check_scores",
            job.market_id,
        )
        snapshot = SettlementSnapshot(
            result=result,
            sentiment=sentiment,
            settlement_hash=compute_settlement_hash(job.market_id, result),
        )
        return await self.journal.save_snapshot(job.market_id, snapshot)

    async def _write_ledger(
        self,
        market_id: str,
        snapshot: SettlementSnapshot,
        done: Set[str],
        state: MarketState,
    ) -> None:
        result = snapshot.result
        sentiment = snapshot.sentiment
        ledger = self.ledger
        crowd = round_half_up(result.crowd_score)

        await self._apply(
            market_id,
            step_key(SettlementStep.RECORD_SENTIMENT),
            done,
            lambda: ledger.record_sentiment(
                market_id,
                sentiment.score,
                sentiment.confidence,
                hash_text(sentiment.summary),
            ),
        )
        for op in result.opinions:
            await self._apply(
                market_id,
                step_key(SettlementStep.RECORD_AI_SCORE, op.id),
                done,
                lambda op=op: ledger.record_ai_score(market_id, op.id, op.ai_score),
            )
        for op in result.opinions:
            await self._apply(
                market_id,
                step_key(SettlementStep.SETTLE_OPINION, op.id),
                done,
                lambda op=op: ledger.settle_opinion(
                    market_id, op.id, crowd, op.weight_score, op.prediction_score
                ),
            )

        finalize = step_key(SettlementStep.FINALIZE_SETTLEMENT)
        if state == MarketState.SETTLED and finalize not in done:
            # Finalized by an earlier attempt that died before journaling it
            await self.journal.mark_done(market_id, finalize, "observed settled")
            done.add(finalize)
        await self._apply(market_id, finalize, done, lambda: ledger.finalize_settlement(market_id))

        for op in result.opinions:
            await self._apply(
                market_id,
                step_key(SettlementStep.CLAIM_PAYOUT, op.id),
                done,
                lambda op=op: ledger.claim_payout(
                    market_id,
                    op.id,
                    op.staker,
                    op.payout_amount,
                    result.total_net_backing,
                    result.total_prediction_weight,
                ),
            )
        if result.jackpot_winner_staker is not None:
            await self._apply(
                market_id,
                step_key(SettlementStep.CLAIM_JACKPOT),
                done,
                lambda: ledger.claim_jackpot(market_id, result.jackpot_winner_staker, result.jackpot_amount),
            )

    async def _apply(
        self,
        market_id: str,
        key: str,
        done: Set[str],
        instruction: Callable[[], Awaitable[LedgerReceipt]],
    ) -> None:
        """Issue one ledger instruction unless it is already journaled."""
        if key in done:
            self.audit.log_step(market_id, key, reused=True)
            return
        try:
            receipt = await self._timed(instruction(), key, market_id)
            detail = receipt.reference
        except DuplicateInstructionError as e:
            logger.warning({"ledger_step_already_applied": {"market_id": market_id, "step": key, "detail": str(e)}})
            detail = "already applied"
        await self.journal.mark_done(market_id, key, detail)
        done.add(key)
        self.audit.log_step(market_id, key)

    async def _persist(self, market_id: str, snapshot: SettlementSnapshot) -> bool:
        """Mirror the settlement to the store. False if the write failed."""
        if self.store is None:
            return False
        key = step_key(SettlementStep.PERSIST_SETTLEMENT)
        try:
            await self._timed(
                self.store.persist_settlement(market_id, snapshot.result, snapshot.settlement_hash),
                key,
                market_id,
            )
        except (StoreWriteError, SettlementStepTimeout) as e:
            logger.warning({
                "store_persist_failed": {
                    "market_id": market_id,
                    "error": str(e),
                    "note": "ledger state is authoritative",
                }
            })
            return False
        await self.journal.mark_done(market_id, key, snapshot.settlement_hash)
        self.audit.log_step(market_id, key)
        return True

    async def _retry_store_mirror(self, market_id: str, done: Set[str]) -> None:
        if self.store is None or step_key(SettlementStep.PERSIST_SETTLEMENT) in done:
            return
        snapshot = await self.journal.load_snapshot(market_id)
        if snapshot is not None and await self._persist(market_id, snapshot):
            logger.info({"store_mirror_recovered": {"market_id": market_id}})

    async def _timed(self, awaitable: Awaitable[Any], step: str, market_id: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.params.step_timeout_sec)
        except asyncio.TimeoutError as e:
            raise SettlementStepTimeout(
                f"{step} for {market_id} exceeded {self.params.step_timeout_sec}s"
            ) from e


__all__ = ["SettlementCoordinator", "SettlementStepTimeout"]
