"""Background polling of deploying deployments."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from deploygate.domain.models.deployment import DeploymentStatus
from deploygate.domain.services.deployment_orchestrator import DeploymentOrchestrator
from deploygate.infrastructure.observability.metrics import (
    DEPLOYMENT_DURATION,
    DEPLOYMENTS_FINISHED_TOTAL,
    IN_FLIGHT_POLLS,
)
from deploygate.workers.base import PeriodicWorker


logger = structlog.get_logger(__name__)


class DeploymentPollWorker(PeriodicWorker):
    """Polls every deploying deployment once per interval.

    A deployment whose previous poll is still running is skipped, so two
    polls of the same deployment never overlap.
    """

    name = "deployment-poller"

    def __init__(
        self,
        orchestrator: DeploymentOrchestrator,
        interval: float = 5.0,
        max_concurrent: int = 8,
        worker_id: str | None = None,
    ) -> None:
        super().__init__(interval=interval, worker_id=worker_id)
        self._orchestrator = orchestrator
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._in_flight: set[str] = set()
        self._background_tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    async def tick(self) -> None:
        deployments = await self._orchestrator.list_deployments(
            DeploymentStatus.DEPLOYING, limit=1000
        )
        for deployment in deployments:
            if deployment.id in self._in_flight:
                logger.debug("poll_skipped_in_flight", deployment_id=deployment.id)
                continue
            self._in_flight.add(deployment.id)
            task = asyncio.create_task(self._poll(deployment.id))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    async def _poll(self, deployment_id: str) -> None:
        IN_FLIGHT_POLLS.inc()
        try:
            async with self._semaphore:
                deployment = await self._orchestrator.poll_deployment(deployment_id)
            if deployment.is_terminal:
                DEPLOYMENTS_FINISHED_TOTAL.labels(
                    status=deployment.status.value,
                    environment=deployment.environment.value,
                ).inc()
                if deployment.duration is not None:
                    DEPLOYMENT_DURATION.labels(
                        environment=deployment.environment.value,
                        status=deployment.status.value,
                    ).observe(deployment.duration.total_seconds())
        except Exception as e:
            logger.exception("deployment_poll_failed", deployment_id=deployment_id, error=str(e))
        finally:
            IN_FLIGHT_POLLS.dec()
            self._in_flight.discard(deployment_id)

    async def drain(self) -> None:
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def get_health(self) -> dict[str, Any]:
        health = super().get_health()
        health["in_flight"] = len(self._in_flight)
        return health
