"""Oracle entrypoint.

Runs the settlement worker pool plus the settlement and live monitors until
SIGINT/SIGTERM. ``--once`` runs one cycle of each monitor, drains due jobs
and exits. ``--list-failed`` and ``--requeue JOB_ID`` only touch the job
table and exit.
"""

import argparse
import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from tricheck.config import Settings, load_settings, sanitize_dict
from tricheck.oracle.database.dbm import DBM
from tricheck.oracle.gateways.http import JsonHttpClient
from tricheck.oracle.gateways.ledger import LedgerGatewayClient, LocalLedger, SettlementLedger
from tricheck.oracle.gateways.query import MarketQueryClient
from tricheck.oracle.gateways.store import MarketStoreClient
from tricheck.oracle.monitors.live import LiveMonitor
from tricheck.oracle.monitors.settlement import SettlementMonitor
from tricheck.oracle.rating import AnthropicRatingService
from tricheck.oracle.scoring.scorer import TripleCheckScorer
from tricheck.oracle.settlement.coordinator import SettlementCoordinator
from tricheck.oracle.settlement.journal import SettlementJournal
from tricheck.oracle.settlement.queue import SettlementQueue
from tricheck.shared.logging import configure_logging

logger = logging.getLogger("tricheck.oracle")


@dataclass
class OracleRuntime:
    dbm: DBM
    api_http: JsonHttpClient
    ledger: SettlementLedger
    rating: AnthropicRatingService
    coordinator: SettlementCoordinator
    settlement_monitor: SettlementMonitor
    live_monitor: LiveMonitor

    async def close(self) -> None:
        await self.rating.close()
        await self.ledger.close()
        await self.api_http.close()
        await self.dbm.dispose()


def build_ledger(settings: Settings) -> SettlementLedger:
    if settings.ledger.mode == "gateway":
        http = JsonHttpClient(
            settings.ledger.gateway_url,
            timeout_seconds=settings.ledger.timeout_sec,
            max_retries=0,
        )
        return LedgerGatewayClient(http, signer=settings.ledger.authority)
    logger.warning({"ledger_mode": "local", "note": "in-memory ledger, not durable across restarts"})
    return LocalLedger(authority=settings.ledger.authority)


async def build_runtime(settings: Settings) -> OracleRuntime:
    params = settings.settlement

    dbm = DBM(settings.database.resolved_url(settings.test_mode), echo=settings.database.echo)
    await dbm.create_all()

    api_http = JsonHttpClient(
        settings.api.base_url,
        timeout_seconds=settings.api.timeout_sec,
        max_retries=settings.api.max_retries,
    )
    query = MarketQueryClient(api_http, page_size=params.monitor.page_size)
    store = MarketStoreClient(api_http)

    rating = AnthropicRatingService(
        settings.rating.api_key.get_secret_value(),
        model=settings.rating.model,
        timeout_sec=params.rating.timeout_sec,
        max_tokens=settings.rating.max_tokens,
        summary_max_tokens=settings.rating.summary_max_tokens,
        max_text_chars=params.rating.max_text_chars,
    )
    scorer = TripleCheckScorer(rating, params=params)
    ledger = build_ledger(settings)

    coordinator = SettlementCoordinator(
        scorer=scorer,
        queue=SettlementQueue(dbm, params.worker),
        journal=SettlementJournal(dbm),
        ledger=ledger,
        store=store,
        params=params.worker,
    )
    return OracleRuntime(
        dbm=dbm,
        api_http=api_http,
        ledger=ledger,
        rating=rating,
        coordinator=coordinator,
        settlement_monitor=SettlementMonitor(query, coordinator, params.monitor),
        live_monitor=LiveMonitor(query, store, scorer, params.monitor),
    )


async def run_once(runtime: OracleRuntime) -> None:
    for monitor in (runtime.settlement_monitor, runtime.live_monitor):
        try:
            await monitor.run_once()
        except Exception as e:
            logger.error({"monitor_cycle_failed": {"name": monitor.name, "error": f"{type(e).__name__}: {e}"}})
    processed = await runtime.coordinator.drain()
    logger.info({"oracle_once": {"jobs_processed": processed}})


async def run_forever(runtime: OracleRuntime) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await runtime.coordinator.start()
    await runtime.settlement_monitor.start()
    await runtime.live_monitor.start()
    logger.info({"oracle": "running (settlement + live scoring)"})

    await stop.wait()
    logger.info({"oracle": "shutdown_signal_received"})
    await runtime.settlement_monitor.stop()
    await runtime.live_monitor.stop()
    await runtime.coordinator.stop(timeout=runtime.coordinator.params.step_timeout_sec)


async def run_admin(args: argparse.Namespace, settings: Settings) -> None:
    """Operator commands against the job table. Monitors and workers stay off."""
    dbm = DBM(settings.database.resolved_url(settings.test_mode), echo=settings.database.echo)
    await dbm.create_all()
    queue = SettlementQueue(dbm, settings.settlement.worker)
    try:
        for job_id in args.requeue or []:
            if await queue.requeue(job_id):
                logger.info({"operator_requeue": {"job_id": job_id}})
            else:
                logger.warning({"operator_requeue_refused": {"job_id": job_id, "reason": "no failed job with this id"}})

        if args.list_failed:
            failed = await queue.list_failed()
            for job in failed:
                logger.info({
                    "failed_job": {
                        "job_id": job.job_id,
                        "market_id": job.market_id,
                        "attempts": job.attempts,
                        "error": job.last_error,
                    }
                })
            logger.info({"failed_jobs": len(failed)})
    finally:
        await dbm.dispose()


async def _main(args: argparse.Namespace, settings: Settings) -> None:
    if args.list_failed or args.requeue:
        await run_admin(args, settings)
        return

    runtime = await build_runtime(settings)
    try:
        if args.once:
            await run_once(runtime)
        else:
            await run_forever(runtime)
    finally:
        await runtime.close()
        logger.info({"oracle": "stopped"})


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tricheck settlement oracle")
    parser.add_argument("--once", action="store_true", help="run one cycle and drain the queue")
    parser.add_argument("--log-level", type=str, default=None, help="override logging.level")
    parser.add_argument("--list-failed", action="store_true", help="log jobs parked as failed and exit")
    parser.add_argument(
        "--requeue",
        action="append",
        metavar="JOB_ID",
        default=None,
        help="give a failed job fresh attempts and exit (repeatable)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    # Load .env if not in test mode
    if os.environ.get("TRICHECK_TEST_MODE") != "true":
        load_dotenv()

    args = parse_args(argv)
    settings = load_settings()
    configure_logging(
        args.log_level or settings.logging.level,
        settings.logging.log_dir,
        settings.logging.max_bytes,
    )
    logger.info({"oracle_config": sanitize_dict(settings.model_dump(mode="json"))})

    try:
        asyncio.run(_main(args, settings))
    except KeyboardInterrupt:
        logger.info({"oracle": "keyboard_interrupt"})


if __name__ == "__main__":
    main()
