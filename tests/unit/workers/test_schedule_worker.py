"""Unit tests for the schedule worker."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from deploygate.domain.models.deployment import DeploymentSpec, DeploymentStatus
from deploygate.domain.services.deployment_orchestrator import DeploymentOrchestrator
from deploygate.workers.schedule_worker import ScheduleWorker

if TYPE_CHECKING:
    from tests.conftest import FrozenClock


@pytest.mark.asyncio
async def test_starts_deployment_once_due(
    orchestrator: DeploymentOrchestrator,
    sample_spec: DeploymentSpec,
    clock: FrozenClock,
) -> None:
    spec = sample_spec.model_copy(update={"scheduled_at": clock() + timedelta(minutes=30)})
    deployment = await orchestrator.create_deployment(spec)
    worker = ScheduleWorker(orchestrator, interval=1.0)

    await worker.run_once()
    assert (await orchestrator.get_deployment(deployment.id)).status == DeploymentStatus.SCHEDULED

    clock.advance(minutes=31)
    await worker.run_once()

    started = await orchestrator.get_deployment(deployment.id)
    assert started.status == DeploymentStatus.DEPLOYING
    assert started.executed_by == started.author


@pytest.mark.asyncio
async def test_nothing_due(orchestrator: DeploymentOrchestrator) -> None:
    worker = ScheduleWorker(orchestrator, interval=1.0)
    await worker.run_once()
    assert worker.get_health()["ticks"] == 1
