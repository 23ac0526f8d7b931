"""Tests for the shared polling loop."""

import asyncio

from tricheck.oracle.monitors.base import PollingMonitor


class CountingMonitor(PollingMonitor):
    name = "counting"

    def __init__(self, interval_sec=0.01, fail_first=False):
        super().__init__(interval_sec)
        self.cycles = 0
        self.fail_first = fail_first

    async def run_once(self):
        self.cycles += 1
        if self.fail_first and self.cycles == 1:
            raise RuntimeError("first cycle fails")
        return 0


async def _wait_for_cycles(monitor, n):
    for _ in range(200):
        if monitor.cycles >= n:
            return
        await asyncio.sleep(0.01)


class TestPollingMonitor:
    """Tests for PollingMonitor."""

    async def test_runs_until_stopped(self):
        monitor = CountingMonitor()
        await monitor.start()
        assert monitor.running

        await _wait_for_cycles(monitor, 3)
        await monitor.stop()

        assert monitor.cycles >= 3
        assert not monitor.running

    async def test_survives_failing_cycle(self):
        monitor = CountingMonitor(fail_first=True)
        await monitor.start()
        await _wait_for_cycles(monitor, 2)
        await monitor.stop()
        assert monitor.cycles >= 2

    async def test_start_is_idempotent(self):
        monitor = CountingMonitor()
        await monitor.start()
        task = monitor._task
        await monitor.start()
        assert monitor._task is task
        await monitor.stop()

    async def test_stop_wakes_sleeping_loop(self):
        monitor = CountingMonitor(interval_sec=30)
        await monitor.start()
        await _wait_for_cycles(monitor, 1)
        await asyncio.wait_for(monitor.stop(), timeout=2)
        assert monitor.cycles == 1

    async def test_stop_before_start(self):
        await CountingMonitor().stop()
