"""Fixed-interval polling loop shared by both monitors."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class PollingMonitor(ABC):
    """Runs ``run_once`` every ``interval_sec`` until stopped.

    A cycle that raises is logged and the loop keeps going. Cycles never
    overlap; a slow cycle delays the next one.
    """

    name: str = "monitor"

    def __init__(self, interval_sec: float):
        self.interval_sec = interval_sec
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @abstractmethod
    async def run_once(self) -> int:
        """One discovery cycle. Returns the number of markets acted on."""

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info({"monitor_started": {"name": self.name, "interval_sec": self.interval_sec}})

    async def stop(self) -> None:
        self._stop.set()
        if self._task is None:
            return
        task, self._task = self._task, None
        try:
            await asyncio.wait_for(task, timeout=self.interval_sec)
        except asyncio.TimeoutError:
            logger.warning({"monitor_stop_timeout": self.name})
        logger.info({"monitor_stopped": self.name})

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error({"monitor_cycle_failed": {"name": self.name, "error": f"{type(e).__name__}: {e}"}})
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_sec)
            except asyncio.TimeoutError:
                pass


__all__ = ["PollingMonitor"]
