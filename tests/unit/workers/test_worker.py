"""Unit tests for the periodic worker base class."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from deploygate.workers.base import PeriodicWorker


class CountingWorker(PeriodicWorker):
    """Counts ticks; optionally fails on every tick."""

    name = "counting"

    def __init__(self, should_fail: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._should_fail = should_fail
        self.ticked = 0

    async def tick(self) -> None:
        self.ticked += 1
        if self._should_fail:
            raise RuntimeError("Simulated failure")


class TestPeriodicWorker:
    def test_generated_id(self) -> None:
        worker = CountingWorker(interval=1.0)
        assert worker.worker_id.startswith("counting-")

    def test_custom_id(self) -> None:
        assert CountingWorker(interval=1.0, worker_id="w-1").worker_id == "w-1"

    @pytest.mark.asyncio
    async def test_run_once(self) -> None:
        worker = CountingWorker(interval=1.0)
        await worker.run_once()
        await worker.run_once()
        assert worker.ticked == 2
        assert worker.get_health()["ticks"] == 2

    @pytest.mark.asyncio
    async def test_tick_errors_are_contained(self) -> None:
        worker = CountingWorker(interval=1.0, should_fail=True)
        await worker.run_once()
        assert worker.ticked == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        worker = CountingWorker(interval=0.01, worker_id="w-1")
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        assert worker.is_running

        await worker.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert not worker.is_running
        assert worker.ticked >= 2
        health = worker.get_health()
        assert health["worker_id"] == "w-1"
        assert health["running"] is False
        assert health["interval"] == 0.01

    @pytest.mark.asyncio
    async def test_failing_worker_keeps_running(self) -> None:
        worker = CountingWorker(interval=0.01, should_fail=True)
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        await worker.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert worker.ticked >= 2
