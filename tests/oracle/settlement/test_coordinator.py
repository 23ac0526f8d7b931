"""Tests for the settlement coordinator against the in-process ledger."""

import asyncio
import logging
import random
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from tricheck.oracle.config.settlement_params import RatingParams, SettlementParams, WorkerParams
from tricheck.oracle.database.dbm import utcnow
from tricheck.oracle.gateways.ledger import LedgerError, LocalLedger
from tricheck.oracle.gateways.store import StoreWriteError
from tricheck.oracle.scoring.audit.hashing import compute_settlement_hash
from tricheck.oracle.scoring.audit.report import SettlementAuditLogger
from tricheck.oracle.scoring.scorer import TripleCheckScorer
from tricheck.oracle.scoring.types import ValidationError
from tricheck.oracle.settlement.coordinator import SettlementCoordinator
from tricheck.oracle.settlement.journal import SettlementJournal, step_key
from tricheck.oracle.settlement.queue import SettlementQueue
from tricheck.shared.enums import JobStatus, MarketState, SettlementStep

AUTHORITY = "oracle-authority"
STATEMENT = "Will the launch happen before March?"


class FlakyLedger(LocalLedger):
    """Fails the first settle_opinion for one opinion."""

    def __init__(self, authority, fail_on="b"):
        super().__init__(authority)
        self.fail_on = fail_on
        self.failures = 1

    async def settle_opinion(self, market_id, opinion_id, *args):
        if opinion_id == self.fail_on and self.failures:
            self.failures -= 1
            raise LedgerError("ledger relay timed out")
        return await super().settle_opinion(market_id, opinion_id, *args)


@pytest.fixture
def ledger():
    return LocalLedger(AUTHORITY)


@pytest.fixture
def make_coordinator(dbm, scorer, ledger):
    def _make(**overrides):
        params = overrides.pop("params", WorkerParams(poll_interval_sec=0.01))
        kwargs = {
            "scorer": scorer,
            "queue": SettlementQueue(dbm, params),
            "journal": SettlementJournal(dbm),
            "ledger": ledger,
            "params": params,
        }
        kwargs.update(overrides)
        return SettlementCoordinator(**kwargs)

    return _make


async def _job_status(coordinator, job_id):
    return (await coordinator.queue.get(job_id)).status


class TestSettle:
    """Full settlement of the reference market."""

    async def test_settles_on_ledger(self, make_coordinator, ledger, reference_opinions):
        coordinator = make_coordinator()
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        assert await coordinator.drain() == 1

        assert await _job_status(coordinator, job_id) == JobStatus.COMPLETED
        assert await ledger.market_state("m1") == MarketState.SETTLED
        acct = ledger.account("m1")
        assert acct.sentiment["score"] == 70
        assert acct.ai_scores == {"a": 60, "b": 60, "c": 60}
        assert {k: v["crowd_score"] for k, v in acct.settled_opinions.items()} == {"a": 56, "b": 56, "c": 56}
        assert acct.paid == {"a": 731_475, "b": 1_477_449, "c": 2_021_074}
        assert acct.jackpot == {"winner": reference_opinions[2].staker, "amount": 270_000}

    async def test_journal_records_every_step(self, make_coordinator, reference_opinions):
        coordinator = make_coordinator()
        await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)
        await coordinator.drain()

        done = await coordinator.journal.completed_steps("m1")
        assert step_key(SettlementStep.RECORD_SENTIMENT) in done
        assert step_key(SettlementStep.CLAIM_PAYOUT, "c") in done
        assert step_key(SettlementStep.CLAIM_JACKPOT) in done
        assert SettlementStep.COMPLETE.value in done

    async def test_duplicate_job_is_noop(self, make_coordinator, fake_rating, ledger, reference_opinions):
        coordinator = make_coordinator()
        first = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)
        second = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        assert await coordinator.drain() == 2

        assert await _job_status(coordinator, first) == JobStatus.COMPLETED
        assert await _job_status(coordinator, second) == JobStatus.COMPLETED
        assert len(fake_rating.rate_calls) == 1
        assert fake_rating.summary_calls == 1
        assert ledger.account("m1").paid["a"] == 731_475

    async def test_settled_market_is_not_enqueued_again(self, make_coordinator, fake_rating, reference_opinions):
        coordinator = make_coordinator()
        await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)
        await coordinator.drain()

        assert await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000) is None
        assert await coordinator.drain() == 0
        assert len(fake_rating.rate_calls) == 1

    async def test_empty_market(self, make_coordinator, ledger):
        coordinator = make_coordinator()
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, [], 0)
        await coordinator.drain()

        assert await _job_status(coordinator, job_id) == JobStatus.COMPLETED
        assert await ledger.market_state("m1") == MarketState.SETTLED
        assert ledger.account("m1").jackpot is None

    async def test_rejects_invalid_snapshot(self, make_coordinator, make_opinion):
        coordinator = make_coordinator()
        with pytest.raises(ValidationError):
            await coordinator.queue_market_for_settlement(
                "m1", STATEMENT, [make_opinion("a"), make_opinion("a")], 1
            )
        assert await coordinator.queue.claim_next("w1") is None


class TestAlreadySettled:
    """Markets settled outside this oracle."""

    async def test_skipped(self, make_coordinator, fake_rating, ledger, reference_opinions):
        ledger.open_market("m1", MarketState.SETTLED)
        coordinator = make_coordinator()
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()

        assert await _job_status(coordinator, job_id) == JobStatus.SKIPPED
        assert fake_rating.rate_calls == []
        assert ledger.account("m1").paid == {}


class TestResume:
    """Retries resume from the journal with the same snapshot."""

    async def test_retry_reuses_snapshot(self, dbm, scorer, fake_rating, reference_opinions):
        ledger = FlakyLedger(AUTHORITY)
        params = WorkerParams()
        coordinator = SettlementCoordinator(
            scorer,
            SettlementQueue(dbm, params),
            SettlementJournal(dbm),
            ledger,
            params=params,
        )
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()
        job = await coordinator.queue.get(job_id)
        assert job.status == JobStatus.PENDING
        assert "ledger relay timed out" in job.last_error
        first = await coordinator.journal.load_snapshot("m1")

        claimed = await coordinator.queue.claim_next("w1", now=utcnow() + timedelta(seconds=3))
        assert claimed.attempts == 2
        assert await coordinator.process(claimed) == JobStatus.COMPLETED

        assert len(fake_rating.rate_calls) == 1
        assert fake_rating.summary_calls == 1
        second = await coordinator.journal.load_snapshot("m1")
        assert second.settlement_hash == first.settlement_hash
        assert ledger.account("m1").paid == {"a": 731_475, "b": 1_477_449, "c": 2_021_074}

    async def test_unjournaled_ledger_write_is_tolerated(self, make_coordinator, ledger, reference_opinions):
        """The ledger applied record_sentiment but the journal never saw it."""
        from tricheck.shared.enums import ConfidenceTier

        await ledger.record_sentiment("m1", 70, ConfidenceTier.MEDIUM, "h")
        coordinator = make_coordinator()
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()

        assert await _job_status(coordinator, job_id) == JobStatus.COMPLETED
        assert await ledger.market_state("m1") == MarketState.SETTLED

    async def test_finalized_but_not_journaled(self, make_coordinator, ledger, reference_opinions):
        """Settled on the ledger after this oracle started: claims still go out."""
        coordinator = make_coordinator()
        journal = coordinator.journal
        await journal.mark_done("m1", step_key(SettlementStep.RECORD_SENTIMENT))
        for op in reference_opinions:
            await journal.mark_done("m1", step_key(SettlementStep.RECORD_AI_SCORE, op.id))
            await journal.mark_done("m1", step_key(SettlementStep.SETTLE_OPINION, op.id))
        ledger.open_market("m1", MarketState.SETTLED)

        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)
        await coordinator.drain()

        assert await _job_status(coordinator, job_id) == JobStatus.COMPLETED
        assert ledger.account("m1").paid["c"] == 2_021_074
        assert step_key(SettlementStep.FINALIZE_SETTLEMENT) in await journal.completed_steps("m1")


class TestFailures:
    """Failure classification."""

    async def test_authorization_error_parks_job(self, dbm, scorer, reference_opinions):
        ledger = LocalLedger(AUTHORITY, signer="intruder")
        params = WorkerParams()
        coordinator = SettlementCoordinator(
            scorer, SettlementQueue(dbm, params), SettlementJournal(dbm), ledger, params=params
        )
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()

        job = await coordinator.queue.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert "LedgerAuthorizationError" in job.last_error

    async def test_step_timeout_is_retried(self, make_coordinator, dbm, rating_factory, reference_opinions):
        slow = TripleCheckScorer(rating_factory(delay=1.0))
        params = WorkerParams(step_timeout_sec=0.05)
        coordinator = make_coordinator(scorer=slow, params=params, queue=SettlementQueue(dbm, params))
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()

        job = await coordinator.queue.get(job_id)
        assert job.status == JobStatus.PENDING
        assert "SettlementStepTimeout" in job.last_error

    async def test_hanging_rating_settles_with_neutral_scores(
        self, make_coordinator, dbm, ledger, rating_factory, make_opinion
    ):
        worker = WorkerParams(step_timeout_sec=0.3, poll_interval_sec=0.01)
        params = SettlementParams(rating=RatingParams(max_batch_size=1, timeout_sec=0.1), worker=worker)
        scorer = TripleCheckScorer(rating_factory(delay=5.0), params=params, rng=random.Random(3))
        coordinator = make_coordinator(scorer=scorer, params=worker, queue=SettlementQueue(dbm, worker))
        opinions = [make_opinion(f"op{i}", market_prediction=50 + i) for i in range(5)]
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, opinions, 5_000_000)

        await coordinator.drain()

        job = await coordinator.queue.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1
        assert set(ledger.account("m1").ai_scores.values()) == {50}
        assert await ledger.market_state("m1") == MarketState.SETTLED

    async def test_store_failure_does_not_fail_settlement(self, make_coordinator, reference_opinions):
        store = MagicMock()
        store.persist_settlement = AsyncMock(side_effect=StoreWriteError("store down", 503))
        coordinator = make_coordinator(store=store)
        job_id = await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()

        assert await _job_status(coordinator, job_id) == JobStatus.COMPLETED
        store.persist_settlement.assert_awaited_once()

    async def test_store_mirror_retried_without_new_jobs(self, make_coordinator, reference_opinions):
        store = MagicMock()
        store.persist_settlement = AsyncMock(
            side_effect=[StoreWriteError("store down", 503), StoreWriteError("store down", 503), None]
        )
        coordinator = make_coordinator(store=store)

        job_ids = []
        for _ in range(5):
            job_ids.append(
                await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)
            )
            await coordinator.drain()

        assert job_ids[0] is not None
        assert job_ids[1:] == [None] * 4
        assert store.persist_settlement.await_count == 3
        done = await coordinator.journal.completed_steps("m1")
        assert step_key(SettlementStep.PERSIST_SETTLEMENT) in done


class TestOutputs:
    """Store mirror and audit report."""

    async def test_store_gets_settlement_hash(self, make_coordinator, reference_opinions):
        store = MagicMock()
        store.persist_settlement = AsyncMock(return_value=None)
        coordinator = make_coordinator(store=store)
        await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()

        market_id, result, settlement_hash = store.persist_settlement.call_args.args
        assert market_id == "m1"
        assert settlement_hash == compute_settlement_hash("m1", result)

    async def test_report_is_logged(self, make_coordinator, reference_opinions):
        audit_logger = MagicMock(spec=logging.Logger)
        coordinator = make_coordinator(audit=SettlementAuditLogger(audit_logger))
        await coordinator.queue_market_for_settlement("m1", STATEMENT, reference_opinions, 5_000_000)

        await coordinator.drain()

        lines = [c.args[0] for c in audit_logger.info.call_args_list]
        assert "Triple-Check Settlement Report (Dual Pool)" in lines
        assert any(isinstance(line, dict) and line.get("event") == "settlement_complete" for line in lines)


class TestWorkerPool:
    """Background workers."""

    async def test_workers_drain_queue(self, make_coordinator, reference_opinions):
        coordinator = make_coordinator()
        ids = [
            await coordinator.queue_market_for_settlement(f"m{i}", STATEMENT, reference_opinions, 5_000_000)
            for i in range(3)
        ]

        await coordinator.start()
        try:
            for _ in range(200):
                statuses = [await _job_status(coordinator, job_id) for job_id in ids]
                if all(s == JobStatus.COMPLETED for s in statuses):
                    break
                await asyncio.sleep(0.02)
        finally:
            await coordinator.stop(timeout=5)

        assert statuses == [JobStatus.COMPLETED] * 3
        assert coordinator._workers == []

    async def test_stop_without_start(self, make_coordinator):
        await make_coordinator().stop()
