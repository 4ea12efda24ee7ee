"""A build server simulated in memory.

Used when no Jenkins is configured and as the runner double in tests.
Each job advances one step per ``status`` call: queued, then building
(emitting its console lines one at a time), then completed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from deploygate.domain.errors import UpstreamUnavailable
from deploygate.domain.models.base import utc_now
from deploygate.domain.models.job import RunnerJobStatus
from deploygate.domain.ports.services import JobRunner


logger = structlog.get_logger(__name__)


@dataclass
class JobScript:
    """How a simulated job behaves."""

    result: str = "SUCCESS"
    queued_polls: int = 1
    lines: list[str] = field(default_factory=lambda: ["Started", "Finished"])


@dataclass
class _SimulatedBuild:
    job_name: str
    queue_id: str
    parameters: dict[str, Any]
    script: JobScript
    polls: int = 0
    build_number: int | None = None
    cancelled: bool = False
    emitted: int = 0


class SimulatedJobRunner(JobRunner):
    def __init__(self) -> None:
        self._scripts: dict[str, JobScript] = {}
        self._builds: dict[str, _SimulatedBuild] = {}
        self._next_queue_id = 100
        self._next_build_number: dict[str, int] = {}
        self._unreachable: set[str] = set()
        self.enqueued: list[tuple[str, dict[str, Any]]] = []
        self.cancelled: list[str] = []

    def script(self, job_name: str, script: JobScript) -> None:
        self._scripts[job_name] = script

    def set_unreachable(self, job_name: str, unreachable: bool = True) -> None:
        """Make every call about ``job_name`` raise UpstreamUnavailable."""
        if unreachable:
            self._unreachable.add(job_name)
        else:
            self._unreachable.discard(job_name)

    def _check_reachable(self, job_name: str) -> None:
        if job_name in self._unreachable:
            raise UpstreamUnavailable(f"Build server unreachable for {job_name}")

    async def enqueue(self, job_name: str, parameters: dict[str, Any]) -> str:
        self._check_reachable(job_name)
        queue_id = str(self._next_queue_id)
        self._next_queue_id += 1
        self._builds[queue_id] = _SimulatedBuild(
            job_name=job_name,
            queue_id=queue_id,
            parameters=dict(parameters),
            script=self._scripts.get(job_name, JobScript()),
        )
        self.enqueued.append((job_name, dict(parameters)))
        logger.debug("simulated_job_queued", job_name=job_name, queue_id=queue_id)
        return queue_id

    async def status(
        self, job_name: str, queue_id: str, build_number: int | None = None
    ) -> RunnerJobStatus:
        self._check_reachable(job_name)
        build = self._builds.get(queue_id)
        if build is None or build.job_name != job_name:
            return RunnerJobStatus(phase="not_found")
        if build.cancelled and build.build_number is None:
            return RunnerJobStatus(phase="cancelled")

        build.polls += 1
        if build.build_number is None:
            if build.polls <= build.script.queued_polls:
                return RunnerJobStatus(phase="queued")
            number = self._next_build_number.get(job_name, 1)
            self._next_build_number[job_name] = number + 1
            build.build_number = number

        if not build.cancelled and build.emitted < len(build.script.lines):
            build.emitted += 1
        console = "".join(f"{line}\n" for line in build.script.lines[:build.emitted])
        finished = build.cancelled or build.emitted >= len(build.script.lines)
        if not finished:
            return RunnerJobStatus(
                phase="building",
                build_number=build.build_number,
                console_log=console,
                started_at=utc_now(),
            )
        return RunnerJobStatus(
            phase="completed",
            result="ABORTED" if build.cancelled else build.script.result,
            build_number=build.build_number,
            console_log=console,
            started_at=utc_now(),
            duration_ms=1000 * build.polls,
        )

    async def cancel(
        self, job_name: str, queue_id: str, build_number: int | None = None
    ) -> None:
        self._check_reachable(job_name)
        build = self._builds.get(queue_id)
        if build is not None:
            build.cancelled = True
        self.cancelled.append(queue_id)
