"""External build job references, derived executions and log lines."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from deploygate.domain.models.base import utc_now, ValueObject


class JobState(str, Enum):
    """Normalized state of one external build job."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATES


TERMINAL_JOB_STATES: frozenset[JobState] = frozenset(
    {JobState.SUCCESS, JobState.FAILED, JobState.ABORTED}
)


class JobRef(ValueObject):
    """One job submitted on behalf of a deployment attempt."""

    job_name: str
    queue_id: str
    attempt: int = 1
    build_number: int | None = None
    state: JobState = JobState.QUEUED
    submitted_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    duration_ms: int | None = None

    @property
    def key(self) -> str:
        """Stable identity used to tag log lines."""
        return f"{self.job_name}:{self.queue_id}"

    @property
    def label(self) -> str:
        if self.build_number is not None:
            return f"{self.job_name}#{self.build_number}"
        return f"{self.job_name}@queue-{self.queue_id}"

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class LogSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def classify_line(message: str) -> LogSeverity:
    """Infer a severity from console output."""
    lowered = message.lower()
    if "error" in lowered or "failed" in lowered or "exception" in lowered:
        return LogSeverity.ERROR
    if "warn" in lowered:
        return LogSeverity.WARNING
    return LogSeverity.INFO


class LogLine(ValueObject):
    """One line of a deployment's merged log stream.

    ``(job_ref, offset)`` identifies the line within its job's console
    output; ``sequence`` is its position in the deployment-wide stream.
    """

    deployment_id: str
    sequence: int = 0
    job_ref: str
    job_label: str
    offset: int
    severity: LogSeverity = LogSeverity.INFO
    message: str
    timestamp: datetime = Field(default_factory=utc_now)

    def render(self) -> str:
        return f"[{self.job_label}] {self.message}"


class JobExecution(ValueObject):
    """Transient view over one external job."""

    job_ref: JobRef
    state: JobState
    console_log: str = ""
    started_at: datetime | None = None
    duration_ms: int | None = None


class RunnerJobStatus(ValueObject):
    """What the build server reports about one job, before normalization.

    ``phase`` is one of ``queued``, ``cancelled``, ``building``,
    ``completed`` or ``not_found``; ``result`` is the runner's native
    result string once the build completed.
    """

    phase: str
    result: str | None = None
    build_number: int | None = None
    console_log: str = ""
    started_at: datetime | None = None
    duration_ms: int | None = None
