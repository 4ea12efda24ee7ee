"""Starts scheduled deployments when their time comes."""

from __future__ import annotations

import structlog

from deploygate.domain.services.deployment_orchestrator import DeploymentOrchestrator
from deploygate.infrastructure.observability.metrics import SCHEDULED_STARTS_TOTAL
from deploygate.workers.base import PeriodicWorker


logger = structlog.get_logger(__name__)


class ScheduleWorker(PeriodicWorker):
    name = "scheduler"

    def __init__(
        self,
        orchestrator: DeploymentOrchestrator,
        interval: float = 30.0,
        worker_id: str | None = None,
    ) -> None:
        super().__init__(interval=interval, worker_id=worker_id)
        self._orchestrator = orchestrator

    async def tick(self) -> None:
        started = await self._orchestrator.run_due_schedules()
        if started:
            SCHEDULED_STARTS_TOTAL.inc(len(started))
            logger.info(
                "scheduled_deployments_started",
                deployment_ids=[d.id for d in started],
            )
