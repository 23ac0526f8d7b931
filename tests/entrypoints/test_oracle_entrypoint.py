"""Tests for the oracle entrypoint wiring."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from tricheck.config import Settings
from tricheck.entrypoints import oracle
from tricheck.oracle.database.dbm import DBM
from tricheck.oracle.gateways.ledger import LedgerGatewayClient, LocalLedger
from tricheck.oracle.settlement.jobs import SettlementJob
from tricheck.oracle.settlement.queue import SettlementQueue
from tricheck.shared.enums import JobStatus


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("TRICHECK_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    monkeypatch.chdir(tmp_path)
    return Settings(
        test_mode=True,
        database={"url": f"sqlite+aiosqlite:///{tmp_path / 'oracle.db'}"},
        rating={"api_key": "sk-test"},
    )


def test_parse_args():
    args = oracle.parse_args(["--once", "--log-level", "DEBUG"])
    assert args.once is True
    assert args.log_level == "DEBUG"

    args = oracle.parse_args([])
    assert args.once is False
    assert args.log_level is None


class TestBuildLedger:
    """Ledger selection by mode."""

    def test_local(self, settings):
        ledger = oracle.build_ledger(settings)
        assert isinstance(ledger, LocalLedger)
        assert ledger.authority == "settlement-authority"

    async def test_gateway(self, settings):
        gateway_settings = settings.model_copy(
            update={"ledger": settings.ledger.model_copy(update={"mode": "gateway", "authority": "auth-1"})}
        )
        ledger = oracle.build_ledger(gateway_settings)
        assert isinstance(ledger, LedgerGatewayClient)
        assert ledger.signer == "auth-1"
        assert ledger.http.max_retries == 0
        await ledger.close()


class TestBuildRuntime:
    """Full wiring against a temporary database."""

    async def test_wires_components(self, settings):
        runtime = await oracle.build_runtime(settings)
        try:
            coordinator = runtime.coordinator
            assert coordinator.params.concurrency == 5
            assert coordinator.store is not None
            assert coordinator.scorer.rating is runtime.rating
            assert runtime.settlement_monitor.interval_sec == 60
            assert runtime.live_monitor.interval_sec == 120
            assert runtime.live_monitor.scorer is coordinator.scorer
            assert await coordinator.queue.pending_count() == 0
        finally:
            await runtime.close()


def _fake_runtime():
    settlement_monitor = MagicMock()
    settlement_monitor.name = "settlement-monitor"
    settlement_monitor.run_once = AsyncMock(side_effect=RuntimeError("api down"))
    live_monitor = MagicMock()
    live_monitor.name = "live-monitor"
    live_monitor.run_once = AsyncMock(return_value=2)
    coordinator = MagicMock()
    coordinator.drain = AsyncMock(return_value=3)
    return oracle.OracleRuntime(
        dbm=MagicMock(),
        api_http=MagicMock(),
        ledger=MagicMock(),
        rating=MagicMock(),
        coordinator=coordinator,
        settlement_monitor=settlement_monitor,
        live_monitor=live_monitor,
    )


async def test_run_once_survives_monitor_failure():
    runtime = _fake_runtime()

    await oracle.run_once(runtime)

    runtime.settlement_monitor.run_once.assert_awaited_once()
    runtime.live_monitor.run_once.assert_awaited_once()
    runtime.coordinator.drain.assert_awaited_once()


def test_main_once(monkeypatch, tmp_path):
    monkeypatch.setenv("TRICHECK_TEST_MODE", "true")
    monkeypatch.setenv("TRICHECK_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    monkeypatch.chdir(tmp_path)
    configure = MagicMock()
    fake_main = AsyncMock()
    monkeypatch.setattr(oracle, "configure_logging", configure)
    monkeypatch.setattr(oracle, "_main", fake_main)

    oracle.main(["--once", "--log-level", "WARNING"])

    assert configure.call_args.args[0] == "WARNING"
    args, settings = fake_main.await_args.args
    assert args.once is True
    assert settings.test_mode is True


def test_parse_operator_flags():
    args = oracle.parse_args(["--list-failed", "--requeue", "j1", "--requeue", "j2"])
    assert args.list_failed is True
    assert args.requeue == ["j1", "j2"]

    args = oracle.parse_args([])
    assert args.list_failed is False
    assert args.requeue is None


class TestOperatorCommands:
    """--list-failed and --requeue against a temporary database."""

    @pytest.fixture
    async def failed_job(self, settings, reference_opinions):
        dbm = DBM(settings.database.url)
        await dbm.create_all()
        queue = SettlementQueue(dbm, settings.settlement.worker)
        job_id = await queue.enqueue(SettlementJob.build("m1", "Statement m1", reference_opinions, 5_000_000))
        claimed = await queue.claim_next("w1")
        await queue.fail(claimed, "ledger rejected", retryable=False)
        yield queue, job_id
        await dbm.dispose()

    async def test_list_failed(self, settings, failed_job, caplog):
        _, job_id = failed_job

        with caplog.at_level(logging.INFO, logger="tricheck.oracle"):
            await oracle._main(oracle.parse_args(["--list-failed"]), settings)

        listed = [r.msg["failed_job"] for r in caplog.records if isinstance(r.msg, dict) and "failed_job" in r.msg]
        assert listed == [{"job_id": job_id, "market_id": "m1", "attempts": 1, "error": "ledger rejected"}]

    async def test_requeue(self, settings, failed_job):
        queue, job_id = failed_job

        await oracle._main(oracle.parse_args(["--requeue", job_id, "--requeue", "unknown"]), settings)

        job = await queue.get(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert await queue.has_failed("m1") is False

    async def test_does_not_start_runtime(self, settings, failed_job, monkeypatch):
        build = AsyncMock()
        monkeypatch.setattr(oracle, "build_runtime", build)

        await oracle._main(oracle.parse_args(["--list-failed", "--once"]), settings)

        build.assert_not_awaited()
