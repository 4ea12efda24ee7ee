"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from deploygate.config import Environment, Settings
from deploygate.domain.models.approval import ApproverSpec
from deploygate.domain.models.deployment import DeploymentEnvironment, DeploymentSpec
from deploygate.domain.models.directory import Project, User
from deploygate.domain.services.approval_gate import ApprovalGate
from deploygate.domain.services.deployment_orchestrator import DeploymentOrchestrator
from deploygate.domain.services.job_runner_adapter import JobRunnerAdapter
from deploygate.domain.services.notification_dispatcher import NotificationDispatcher
from deploygate.domain.services.recipient_resolver import RecipientResolver
from deploygate.infrastructure.cache.local import LocalCacheService, LocalDistributedLock
from deploygate.infrastructure.jenkins.simulated import SimulatedJobRunner
from deploygate.infrastructure.notifications.email import InMemoryEmailTransport
from deploygate.infrastructure.notifications.feed import InMemoryNotificationFeed
from deploygate.infrastructure.persistence.repositories.in_memory import (
    InMemoryApprovalRepository,
    InMemoryDeploymentLogRepository,
    InMemoryDeploymentRepository,
    InMemoryProjectRepository,
    InMemoryUserRepository,
)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def settings() -> Settings:
    return Settings(environment=Environment.TESTING, debug=True, workers_enabled=False)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def users() -> list[User]:
    return [
        User(id="alice", username="alice", display_name="Alice", email="alice@example.com"),
        User(id="bob", username="bob", display_name="Bob", email="bob@example.com"),
        User(id="carol", username="carol", display_name="Carol", email="carol@example.com"),
        User(id="dave", username="dave", display_name="Dave", email="dave@example.com"),
    ]


@pytest.fixture
def project() -> Project:
    return Project(id="proj-1", name="payments", owner_id="bob")


@pytest.fixture
def deployment_repo() -> InMemoryDeploymentRepository:
    return InMemoryDeploymentRepository()


@pytest.fixture
def approval_repo() -> InMemoryApprovalRepository:
    return InMemoryApprovalRepository()


@pytest.fixture
def log_repo() -> InMemoryDeploymentLogRepository:
    return InMemoryDeploymentLogRepository()


@pytest.fixture
def project_repo(project: Project) -> InMemoryProjectRepository:
    return InMemoryProjectRepository([project])


@pytest.fixture
def user_repo(users: list[User]) -> InMemoryUserRepository:
    return InMemoryUserRepository(users)


@pytest.fixture
def lock_service() -> LocalDistributedLock:
    return LocalDistributedLock()


@pytest.fixture
def runner() -> SimulatedJobRunner:
    return SimulatedJobRunner()


@pytest.fixture
def email() -> InMemoryEmailTransport:
    return InMemoryEmailTransport()


@pytest.fixture
def feed() -> InMemoryNotificationFeed:
    return InMemoryNotificationFeed()


@pytest.fixture
def resolver(
    deployment_repo: InMemoryDeploymentRepository,
    project_repo: InMemoryProjectRepository,
) -> RecipientResolver:
    return RecipientResolver(deployment_repo, project_repo, cache=LocalCacheService())


@pytest.fixture
def dispatcher(
    resolver: RecipientResolver,
    user_repo: InMemoryUserRepository,
    feed: InMemoryNotificationFeed,
    email: InMemoryEmailTransport,
) -> NotificationDispatcher:
    return NotificationDispatcher(
        resolver, user_repo, feed, email, console_base_url="https://console.example.com"
    )


@pytest.fixture
def approval_gate(
    approval_repo: InMemoryApprovalRepository,
    deployment_repo: InMemoryDeploymentRepository,
    lock_service: LocalDistributedLock,
    dispatcher: NotificationDispatcher,
) -> ApprovalGate:
    return ApprovalGate(
        approval_repo, deployment_repo, lock_service, dispatcher=dispatcher, lock_wait_seconds=0.2
    )


@pytest.fixture
def job_adapter(
    runner: SimulatedJobRunner,
    log_repo: InMemoryDeploymentLogRepository,
    clock: FrozenClock,
) -> JobRunnerAdapter:
    return JobRunnerAdapter(runner, log_repo, call_timeout=1.0, clock=clock)


@pytest.fixture
def orchestrator(
    deployment_repo: InMemoryDeploymentRepository,
    project_repo: InMemoryProjectRepository,
    approval_gate: ApprovalGate,
    job_adapter: JobRunnerAdapter,
    dispatcher: NotificationDispatcher,
    clock: FrozenClock,
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        deployment_repo,
        project_repo,
        approval_gate,
        job_adapter,
        dispatcher=dispatcher,
        clock=clock,
    )


@pytest.fixture
def sample_spec() -> DeploymentSpec:
    return DeploymentSpec(
        project_id="proj-1",
        name="payments-api",
        environment=DeploymentEnvironment.STAGING,
        version="1.4.0",
        job_names=["build-api", "deploy-api"],
        rollback_job_names=["rollback-api"],
        author_id="alice",
        author_name="Alice",
    )


@pytest.fixture
def approval_spec(sample_spec: DeploymentSpec) -> DeploymentSpec:
    return sample_spec.model_copy(update={
        "require_approval": True,
        "approvers": [
            ApproverSpec(approver_id="carol", approver_name="Carol", level=1),
            ApproverSpec(approver_id="dave", approver_name="Dave", level=2),
        ],
    })
