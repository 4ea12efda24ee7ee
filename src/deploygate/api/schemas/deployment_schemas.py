"""API schemas for deployment and approval endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from deploygate.domain.models.approval import Approval, ApprovalDecision, ApprovalStatus
from deploygate.domain.models.deployment import (
    Deployment,
    DeploymentEnvironment,
    DeploymentStatus,
)
from deploygate.domain.models.job import JobExecution, JobState, LogLine, LogSeverity
from deploygate.domain.models.notification import InAppMessage, MessageSeverity


class ApproverRequest(BaseModel):
    approver_id: str = Field(..., min_length=1)
    approver_name: str = ""
    level: int = Field(default=1, ge=1)


class CreateDeploymentRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    environment: DeploymentEnvironment = DeploymentEnvironment.DEV
    version: str | None = None
    job_names: list[str] = Field(..., min_length=1)
    rollback_job_names: list[str] = Field(default_factory=list)
    require_approval: bool = False
    approvers: list[ApproverRequest] = Field(default_factory=list)
    scheduled_at: datetime | None = None
    build_parameters: dict[str, Any] = Field(default_factory=dict)


class ExecuteDeploymentRequest(BaseModel):
    build_parameters: dict[str, Any] | None = None


class RollbackDeploymentRequest(BaseModel):
    target_version: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=1000)


class DecideApprovalRequest(BaseModel):
    decision: ApprovalDecision
    comment: str | None = Field(default=None, max_length=2000)


class JobRefResponse(BaseModel):
    job_name: str
    queue_id: str
    build_number: int | None = None
    attempt: int
    state: JobState
    submitted_at: datetime
    started_at: datetime | None = None
    duration_ms: int | None = None


class DeploymentResponse(BaseModel):
    id: str
    project_id: str
    name: str
    environment: DeploymentEnvironment
    version: str | None = None
    status: DeploymentStatus
    job_names: list[str]
    job_refs: list[JobRefResponse] = Field(default_factory=list)
    require_approval: bool
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    attempt: int
    author_id: str
    author_name: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, deployment: Deployment) -> DeploymentResponse:
        duration = deployment.duration
        return cls(
            id=deployment.id,
            project_id=deployment.project_id,
            name=deployment.name,
            environment=deployment.environment,
            version=deployment.version,
            status=deployment.status,
            job_names=deployment.job_names,
            job_refs=[JobRefResponse(**ref.model_dump()) for ref in deployment.job_refs],
            require_approval=deployment.require_approval,
            scheduled_at=deployment.scheduled_at,
            started_at=deployment.started_at,
            completed_at=deployment.completed_at,
            duration_seconds=duration.total_seconds() if duration is not None else None,
            attempt=deployment.attempt,
            author_id=deployment.author_id,
            author_name=deployment.author_name,
            details=deployment.details,
            created_at=deployment.created_at,
            updated_at=deployment.updated_at,
        )


class ApprovalResponse(BaseModel):
    id: str
    deployment_id: str
    approver_id: str
    approver_name: str
    level: int
    status: ApprovalStatus
    comment: str | None = None
    decided_at: datetime | None = None

    @classmethod
    def from_domain(cls, approval: Approval) -> ApprovalResponse:
        return cls(
            id=approval.id,
            deployment_id=approval.deployment_id,
            approver_id=approval.approver_id,
            approver_name=approval.approver_name,
            level=approval.level,
            status=approval.status,
            comment=approval.comment,
            decided_at=approval.decided_at,
        )


class JobExecutionResponse(BaseModel):
    job: JobRefResponse
    state: JobState
    console_log: str
    started_at: datetime | None = None
    duration_ms: int | None = None

    @classmethod
    def from_domain(cls, execution: JobExecution) -> JobExecutionResponse:
        return cls(
            job=JobRefResponse(**execution.job_ref.model_dump()),
            state=execution.state,
            console_log=execution.console_log,
            started_at=execution.started_at,
            duration_ms=execution.duration_ms,
        )


class LogLineResponse(BaseModel):
    sequence: int
    job: str
    severity: LogSeverity
    message: str
    timestamp: datetime

    @classmethod
    def from_domain(cls, line: LogLine) -> LogLineResponse:
        return cls(
            sequence=line.sequence,
            job=line.job_label,
            severity=line.severity,
            message=line.render(),
            timestamp=line.timestamp,
        )


class DeploymentStatusResponse(BaseModel):
    deployment: DeploymentResponse
    executions: list[JobExecutionResponse]
    log: list[LogLineResponse]
    approvals: list[ApprovalResponse]


class NotificationResponse(BaseModel):
    id: str
    kind: str
    severity: MessageSeverity
    title: str
    body: str
    action_url: str | None = None
    resource_id: str
    created_at: datetime
    expires_at: datetime | None = None

    @classmethod
    def from_domain(cls, message: InAppMessage) -> NotificationResponse:
        return cls(**message.model_dump(exclude={"user_id"}))


class ErrorResponse(BaseModel):
    kind: str
    message: str
