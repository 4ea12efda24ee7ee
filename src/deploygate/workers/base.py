"""Base worker implementation."""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any

import structlog


logger = structlog.get_logger(__name__)


class PeriodicWorker(ABC):
    """Base class for background loops that tick at a fixed interval.

    Implements the Template Method pattern: subclasses provide ``tick``;
    errors from one tick are logged and the loop carries on.
    """

    name = "worker"

    def __init__(self, interval: float, worker_id: str | None = None) -> None:
        self._worker_id = worker_id or f"{self.name}-{uuid.uuid4().hex[:8]}"
        self._interval = interval
        self._running = False
        self._stopped = asyncio.Event()
        self._ticks = 0

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the loop until :meth:`stop` is called."""
        self._running = True
        self._stopped.clear()
        logger.info("worker_started", worker_id=self._worker_id, interval=self._interval)

        while self._running:
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue

    async def run_once(self) -> None:
        """Run a single tick, logging rather than raising its errors."""
        self._ticks += 1
        try:
            await self.tick()
        except Exception as e:
            logger.exception("worker_tick_error", worker_id=self._worker_id, error=str(e))

    async def stop(self) -> None:
        """Gracefully stop the loop and wait for in-flight work."""
        self._running = False
        self._stopped.set()
        logger.info("worker_stopping", worker_id=self._worker_id)
        await self.drain()
        logger.info("worker_stopped", worker_id=self._worker_id)

    async def drain(self) -> None:
        """Wait for background work started by ticks; no-op by default."""

    def get_health(self) -> dict[str, Any]:
        """Return a health snapshot of the worker."""
        return {
            "worker_id": self._worker_id,
            "running": self._running,
            "interval": self._interval,
            "ticks": self._ticks,
        }

    @abstractmethod
    async def tick(self) -> None:
        """One iteration of the worker's job."""
