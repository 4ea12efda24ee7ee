"""Service container and FastAPI dependency providers."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from fastapi import Request

from deploygate.config import CoordinationBackend, RunnerBackend, Settings, StorageBackend
from deploygate.domain.ports.repositories import (
    ApprovalRepository,
    DeploymentLogRepository,
    DeploymentRepository,
    ProjectRepository,
    UserRepository,
)
from deploygate.domain.ports.services import (
    CacheService,
    DistributedLock,
    EmailTransport,
    JobRunner,
    NotificationFeed,
)
from deploygate.domain.services.approval_gate import ApprovalGate
from deploygate.domain.services.deployment_orchestrator import DeploymentOrchestrator
from deploygate.domain.services.job_runner_adapter import JobRunnerAdapter
from deploygate.domain.services.notification_dispatcher import NotificationDispatcher
from deploygate.domain.services.recipient_resolver import RecipientResolver
from deploygate.infrastructure.cache.local import LocalCacheService, LocalDistributedLock
from deploygate.infrastructure.cache.redis_cache import (
    create_redis_client,
    RedisCacheService,
    RedisDistributedLock,
)
from deploygate.infrastructure.jenkins.client import JenkinsJobRunner
from deploygate.infrastructure.jenkins.simulated import SimulatedJobRunner
from deploygate.infrastructure.notifications.email import SmtpEmailTransport
from deploygate.infrastructure.notifications.feed import (
    InMemoryNotificationFeed,
    RedisNotificationFeed,
)
from deploygate.infrastructure.persistence.database import DatabaseManager
from deploygate.infrastructure.persistence.repositories import (
    InMemoryApprovalRepository,
    InMemoryDeploymentLogRepository,
    InMemoryDeploymentRepository,
    InMemoryProjectRepository,
    InMemoryUserRepository,
    PostgresApprovalRepository,
    PostgresDeploymentLogRepository,
    PostgresDeploymentRepository,
    PostgresProjectRepository,
    PostgresUserRepository,
)
from deploygate.workers.base import PeriodicWorker
from deploygate.workers.poll_worker import DeploymentPollWorker
from deploygate.workers.schedule_worker import ScheduleWorker


logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Explicitly constructed dependency container.

    Implements the Composition Root pattern: every adapter is chosen from
    ``Settings`` here and handed to the domain services. Any adapter can be
    overridden through keyword arguments, which is how tests wire doubles.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        runner: JobRunner | None = None,
        email: EmailTransport | None = None,
        feed: NotificationFeed | None = None,
        projects: ProjectRepository | None = None,
        users: UserRepository | None = None,
    ) -> None:
        self._settings = settings
        self._redis_client: Any = None
        self._database: DatabaseManager | None = None
        self._worker_tasks: list[asyncio.Task[None]] = []

        if settings.coordination_backend == CoordinationBackend.REDIS:
            self._redis_client = create_redis_client(settings.redis)

        # Persistence
        if settings.storage_backend == StorageBackend.POSTGRES:
            self._database = DatabaseManager(settings.database)
            self.deployments: DeploymentRepository = PostgresDeploymentRepository(self._database)
            self.approvals: ApprovalRepository = PostgresApprovalRepository(self._database)
            self.logs: DeploymentLogRepository = PostgresDeploymentLogRepository(self._database)
            self.projects: ProjectRepository = projects or PostgresProjectRepository(self._database)
            self.users: UserRepository = users or PostgresUserRepository(self._database)
        else:
            self.deployments = InMemoryDeploymentRepository()
            self.approvals = InMemoryApprovalRepository()
            self.logs = InMemoryDeploymentLogRepository()
            self.projects = projects or InMemoryProjectRepository()
            self.users = users or InMemoryUserRepository()

        # Coordination
        if self._redis_client is not None:
            self.lock_service: DistributedLock = RedisDistributedLock(self._redis_client)
            self.cache_service: CacheService = RedisCacheService(self._redis_client)
            self.feed: NotificationFeed = feed or RedisNotificationFeed(
                self._redis_client, max_entries=settings.redis.feed_max_entries
            )
        else:
            self.lock_service = LocalDistributedLock()
            self.cache_service = LocalCacheService()
            self.feed = feed or InMemoryNotificationFeed()

        # External systems
        if runner is not None:
            self.runner: JobRunner = runner
        elif settings.runner_backend == RunnerBackend.JENKINS:
            self.runner = JenkinsJobRunner(settings.jenkins)
        else:
            self.runner = SimulatedJobRunner()
        self.email: EmailTransport = email or SmtpEmailTransport(settings.smtp)

        # Domain services
        notify = settings.notifications
        self.resolver = RecipientResolver(
            self.deployments,
            self.projects,
            cache=self.cache_service,
            owner_cache_ttl_seconds=notify.audience_cache_ttl_seconds,
        )
        self.dispatcher = NotificationDispatcher(
            self.resolver,
            self.users,
            self.feed,
            self.email,
            max_concurrency=notify.max_concurrency,
            delivery_timeout=notify.delivery_timeout_seconds,
            console_base_url=notify.console_base_url,
        )
        self.approval_gate = ApprovalGate(
            self.approvals,
            self.deployments,
            self.lock_service,
            dispatcher=self.dispatcher,
            lock_ttl_seconds=settings.redis.lock_timeout,
        )
        self.job_adapter = JobRunnerAdapter(
            self.runner,
            self.logs,
            max_concurrent_calls=settings.poller.max_concurrent_job_calls,
            call_timeout=settings.jenkins.timeout_seconds,
            not_found_grace_seconds=settings.poller.not_found_grace_seconds,
        )
        self.orchestrator = DeploymentOrchestrator(
            self.deployments,
            self.projects,
            self.approval_gate,
            self.job_adapter,
            dispatcher=self.dispatcher,
        )

        # Workers
        self.workers: list[PeriodicWorker] = [
            DeploymentPollWorker(
                self.orchestrator,
                interval=settings.poller.poll_interval_seconds,
                max_concurrent=settings.poller.max_concurrent_deployments,
            ),
            ScheduleWorker(
                self.orchestrator,
                interval=settings.poller.schedule_interval_seconds,
            ),
        ]

    @property
    def settings(self) -> Settings:
        return self._settings

    async def start(self) -> None:
        """Open connections and, if enabled, start the background workers."""
        if self._database is not None:
            await self._database.initialize(create_schema=self._settings.debug)
        if self._settings.workers_enabled:
            for worker in self.workers:
                self._worker_tasks.append(asyncio.create_task(worker.start()))
        logger.info(
            "service_container_started",
            storage=self._settings.storage_backend.value,
            runner=self._settings.runner_backend.value,
            coordination=self._settings.coordination_backend.value,
            workers=len(self._worker_tasks),
        )

    async def shutdown(self) -> None:
        for worker in self.workers:
            if worker.is_running:
                await worker.stop()
        if self._worker_tasks:
            await asyncio.gather(*self._worker_tasks, return_exceptions=True)
            self._worker_tasks.clear()
        if isinstance(self.runner, JenkinsJobRunner):
            await self.runner.aclose()
        if self._redis_client is not None:
            await self._redis_client.aclose()
        if self._database is not None:
            await self._database.close()
        logger.info("service_container_stopped")

    async def health(self) -> dict[str, Any]:
        """Readiness of the collaborators this instance depends on."""
        checks: dict[str, Any] = {}
        if self._redis_client is not None:
            try:
                checks["redis"] = bool(await self._redis_client.ping())
            except Exception as exc:
                logger.warning("redis_health_check_failed", error=str(exc))
                checks["redis"] = False
        if self._database is not None:
            checks["database"] = self._database.is_initialized
        checks["workers"] = [worker.get_health() for worker in self.workers]
        return checks


def get_service_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_orchestrator(request: Request) -> DeploymentOrchestrator:
    return get_service_container(request).orchestrator


def get_approval_gate(request: Request) -> ApprovalGate:
    return get_service_container(request).approval_gate


def get_notification_feed(request: Request) -> NotificationFeed:
    return get_service_container(request).feed
