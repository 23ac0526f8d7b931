"""Settlement discovery: Closed markets past their close time go to the queue."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Set

from tricheck.oracle.config.settlement_params import MonitorParams
from tricheck.oracle.database.dbm import utcnow
from tricheck.oracle.gateways.http import GatewayError
from tricheck.oracle.gateways.query import MarketQueryClient
from tricheck.oracle.scoring.types import ValidationError
from tricheck.oracle.settlement.coordinator import SettlementCoordinator
from tricheck.shared.enums import MarketState

from .base import PollingMonitor

logger = logging.getLogger(__name__)


class SettlementMonitor(PollingMonitor):
    """Enqueues one settlement job per due market per cycle.

    Markets seen in earlier cycles are offered again. The coordinator
    refuses the ones it already settled, and its journal turns any other
    repeats into no-ops.
    """

    name = "settlement-monitor"

    def __init__(
        self,
        query: MarketQueryClient,
        coordinator: SettlementCoordinator,
        params: Optional[MonitorParams] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.params = params or MonitorParams()
        super().__init__(self.params.settlement_interval_sec)
        self.query = query
        self.coordinator = coordinator
        self.clock = clock

    async def run_once(self) -> int:
        markets = await self.query.list_markets(MarketState.CLOSED)
        now = self.clock()
        seen: Set[str] = set()
        enqueued = 0

        for market in markets:
            if market.id in seen or not market.is_past_close(now):
                continue
            seen.add(market.id)
            try:
                detail = await self.query.get_market(market.id)
                job_id = await self.coordinator.queue_market_for_settlement(
                    detail.id,
                    detail.statement,
                    detail.opinions,
                    detail.total_stake,
                )
            except GatewayError as e:
                logger.warning({"settlement_candidate_fetch_failed": {"market_id": market.id, "error": str(e)}})
                continue
            except ValidationError as e:
                logger.error({"settlement_candidate_invalid": {"market_id": market.id, "error": str(e)}})
                continue
            if job_id is not None:
                enqueued += 1

        logger.debug({"settlement_cycle": {"closed": len(markets), "enqueued": enqueued}})
        return enqueued


__all__ = ["SettlementMonitor"]
