"""Bridges deployments and the external build server."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

import structlog
from pydantic import Field

from deploygate.domain.errors import UpstreamUnavailable
from deploygate.domain.models.base import utc_now, ValueObject
from deploygate.domain.models.deployment import Deployment
from deploygate.domain.models.job import (
    classify_line,
    JobExecution,
    JobRef,
    JobState,
    LogLine,
    RunnerJobStatus,
)
from deploygate.domain.ports.repositories import DeploymentLogRepository
from deploygate.domain.ports.services import JobRunner


logger = structlog.get_logger(__name__)

_T = TypeVar("_T")

# Native build results once a build has completed.
_RESULT_STATES: dict[str, JobState] = {
    "SUCCESS": JobState.SUCCESS,
    "FAILURE": JobState.FAILED,
    "UNSTABLE": JobState.FAILED,
    "ABORTED": JobState.ABORTED,
    "NOT_BUILT": JobState.ABORTED,
}


class JobSubmissionError(UpstreamUnavailable):
    """Submitting a job set failed part-way.

    ``enqueued`` holds the refs that had been queued before the failure;
    cancellation of those has already been requested.
    """

    def __init__(self, message: str, enqueued: list[JobRef] | None = None) -> None:
        super().__init__(message)
        self.enqueued = list(enqueued or [])


class PollResult(ValueObject):
    """Outcome of one poll cycle over a deployment's active jobs."""

    refs: list[JobRef] = Field(default_factory=list)
    new_lines: list[LogLine] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)


def map_runner_status(
    ref: JobRef, status: RunnerJobStatus, now: datetime, not_found_grace: timedelta
) -> JobState:
    """Map the build server's report onto the normalized job state."""
    if status.phase == "queued":
        return JobState.QUEUED
    if status.phase == "cancelled":
        return JobState.ABORTED
    if status.phase == "building":
        return JobState.RUNNING
    if status.phase == "completed":
        return _RESULT_STATES.get((status.result or "").upper(), JobState.FAILED)
    if status.phase == "not_found":
        if now - ref.submitted_at >= not_found_grace:
            return JobState.ABORTED
        return ref.state
    logger.warning("runner_phase_unknown", phase=status.phase, job=ref.label)
    return ref.state


def split_console(console_log: str, finished: bool) -> list[str]:
    """Split console output into complete lines.

    A trailing line without a newline is still being written unless the
    job has finished.
    """
    lines = console_log.splitlines()
    if lines and not finished and not console_log.endswith(("\n", "\r")):
        lines.pop()
    return lines


class JobRunnerAdapter:
    """Submits, polls and cancels the build jobs of a deployment.

    The adapter is the only producer of job state and log lines. It never
    writes the deployment itself; callers apply the refs it returns.
    """

    def __init__(
        self,
        runner: JobRunner,
        log_repo: DeploymentLogRepository,
        max_concurrent_calls: int = 4,
        call_timeout: float = 30.0,
        not_found_grace_seconds: float = 300.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._runner = runner
        self._log_repo = log_repo
        self._max_concurrent_calls = max(1, max_concurrent_calls)
        self._call_timeout = call_timeout
        self._not_found_grace = timedelta(seconds=not_found_grace_seconds)
        self._clock = clock

    async def _call(self, operation: str, awaitable: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._call_timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(
                f"Build server {operation} timed out after {self._call_timeout}s"
            ) from exc

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        deployment: Deployment,
        job_names: list[str],
        build_parameters: dict[str, Any],
    ) -> list[JobRef]:
        """Enqueue every job in order for the deployment's current attempt."""
        refs: list[JobRef] = []
        for job_name in job_names:
            try:
                queue_id = await self._call(
                    "enqueue", self._runner.enqueue(job_name, build_parameters)
                )
            except UpstreamUnavailable as exc:
                logger.warning(
                    "job_submission_failed",
                    deployment_id=deployment.id,
                    job_name=job_name,
                    enqueued=len(refs),
                    error=str(exc),
                )
                if refs:
                    await self.cancel_all(refs)
                raise JobSubmissionError(
                    f"Submitting {job_name} failed: {exc}", enqueued=refs
                ) from exc

            refs.append(JobRef(
                job_name=job_name,
                queue_id=queue_id,
                attempt=deployment.attempt,
                submitted_at=self._clock(),
            ))

        logger.info(
            "jobs_submitted",
            deployment_id=deployment.id,
            attempt=deployment.attempt,
            jobs=[ref.label for ref in refs],
        )
        return refs

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self, deployment: Deployment) -> PollResult:
        """Refresh every unfinished job of the current attempt once.

        Returns the refreshed refs and the log lines that were new. A job
        whose status call fails keeps its previous state.
        """
        active = [ref for ref in deployment.current_job_refs if not ref.is_terminal]
        if not active:
            return PollResult()

        semaphore = asyncio.Semaphore(self._max_concurrent_calls)
        now = self._clock()
        results = await asyncio.gather(
            *(self._poll_one(semaphore, ref, now) for ref in active)
        )

        refs: list[JobRef] = []
        errors: dict[str, str] = {}
        consoles: list[tuple[JobRef, list[str]]] = []
        for ref, lines, error in results:
            refs.append(ref)
            if error is not None:
                errors[ref.key] = error
            elif lines:
                consoles.append((ref, lines))

        new_lines = await self._merge_logs(deployment.id, consoles) if consoles else []

        logger.debug(
            "deployment_polled",
            deployment_id=deployment.id,
            jobs=len(refs),
            new_lines=len(new_lines),
            errors=len(errors),
        )
        return PollResult(refs=refs, new_lines=new_lines, errors=errors)

    async def _poll_one(
        self, semaphore: asyncio.Semaphore, ref: JobRef, now: datetime
    ) -> tuple[JobRef, list[str], str | None]:
        async with semaphore:
            try:
                status = await self._call(
                    "status",
                    self._runner.status(ref.job_name, ref.queue_id, ref.build_number),
                )
            except UpstreamUnavailable as exc:
                logger.warning("job_poll_failed", job=ref.label, error=str(exc))
                return ref, [], str(exc)

        state = map_runner_status(ref, status, now, self._not_found_grace)
        updated = ref.model_copy(update={
            "state": state,
            "build_number": status.build_number or ref.build_number,
            "started_at": status.started_at or ref.started_at,
            "duration_ms": status.duration_ms if status.duration_ms is not None else ref.duration_ms,
        })
        if updated.state != ref.state:
            logger.info(
                "job_state_changed",
                job=updated.label,
                previous=ref.state.value,
                state=updated.state.value,
            )
        return updated, split_console(status.console_log, updated.is_terminal), None

    async def _merge_logs(
        self, deployment_id: str, consoles: list[tuple[JobRef, list[str]]]
    ) -> list[LogLine]:
        offsets = await self._log_repo.offsets(deployment_id)
        candidates: list[LogLine] = []
        now = self._clock()
        for ref, lines in consoles:
            start = offsets.get(ref.key, 0)
            for offset in range(start, len(lines)):
                message = lines[offset]
                candidates.append(LogLine(
                    deployment_id=deployment_id,
                    job_ref=ref.key,
                    job_label=ref.label,
                    offset=offset,
                    severity=classify_line(message),
                    message=message,
                    timestamp=now,
                ))
        if not candidates:
            return []
        return await self._log_repo.append(deployment_id, candidates)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, ref: JobRef) -> bool:
        """Best-effort cancel of one job; True if it is known to be stopped."""
        if ref.is_terminal:
            return True
        try:
            await self._call(
                "cancel", self._runner.cancel(ref.job_name, ref.queue_id, ref.build_number)
            )
        except UpstreamUnavailable as exc:
            logger.warning("job_cancel_failed", job=ref.label, error=str(exc))
            return False
        logger.info("job_cancelled", job=ref.label)
        return True

    async def cancel_all(self, refs: list[JobRef]) -> list[bool]:
        """Attempt to cancel every ref, regardless of individual failures."""
        semaphore = asyncio.Semaphore(self._max_concurrent_calls)

        async def _guarded(ref: JobRef) -> bool:
            async with semaphore:
                return await self.cancel(ref)

        return list(await asyncio.gather(*(_guarded(ref) for ref in refs)))

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def merged_log(self, deployment: Deployment) -> list[LogLine]:
        """Stored log lines, labelled with what is now known about each job.

        A line written while its job was still queued carries the queue
        label; it is relabelled here so every line of a job shares one prefix.
        """
        labels = {ref.key: ref.label for ref in deployment.job_refs}
        return [
            line.model_copy(update={"job_label": labels[line.job_ref]})
            if labels.get(line.job_ref, line.job_label) != line.job_label
            else line
            for line in await self._log_repo.list_by_deployment(deployment.id)
        ]

    async def executions(self, deployment: Deployment) -> list[JobExecution]:
        """Per-job view of the current attempt built from stored data only."""
        lines = await self._log_repo.list_by_deployment(deployment.id)
        by_job: dict[str, list[str]] = {}
        for line in lines:
            by_job.setdefault(line.job_ref, []).append(line.message)
        return [
            JobExecution(
                job_ref=ref,
                state=ref.state,
                console_log="\n".join(by_job.get(ref.key, [])),
                started_at=ref.started_at,
                duration_ms=ref.duration_ms,
            )
            for ref in deployment.current_job_refs
        ]
