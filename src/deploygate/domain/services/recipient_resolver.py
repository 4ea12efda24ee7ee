"""Decides who hears about a lifecycle event."""

from __future__ import annotations

import structlog

from deploygate.domain.errors import DeployGateError
from deploygate.domain.events.notification_events import LifecycleEvent, ResourceType
from deploygate.domain.ports.repositories import DeploymentRepository, ProjectRepository
from deploygate.domain.ports.services import CacheService


logger = structlog.get_logger(__name__)

_AUDIENCE_RESOURCES = frozenset(
    {ResourceType.DEPLOYMENT, ResourceType.APPROVAL, ResourceType.TASK}
)


class RecipientResolver:
    """Computes the set of user ids that should be notified about an event.

    The acting user is always included. Events about deployments, approvals
    and scheduled tasks also reach the project owner and the deployment
    author. Any lookup failure degrades to the recipients already known.
    """

    def __init__(
        self,
        deployment_repo: DeploymentRepository,
        project_repo: ProjectRepository,
        cache: CacheService | None = None,
        owner_cache_ttl_seconds: int = 300,
    ) -> None:
        self._deployment_repo = deployment_repo
        self._project_repo = project_repo
        self._cache = cache
        self._owner_cache_ttl = owner_cache_ttl_seconds

    async def resolve(self, event: LifecycleEvent) -> set[str]:
        recipients: set[str] = {event.acting_user_id}
        recipients.update(user_id for user_id in event.addressees if user_id)

        if event.resource_type not in _AUDIENCE_RESOURCES:
            return recipients

        try:
            deployment = await self._deployment_repo.get_by_id(event.deployment_id)
            if deployment is None:
                logger.warning(
                    "recipient_deployment_missing",
                    deployment_id=event.deployment_id,
                    kind=event.kind,
                )
                return recipients

            recipients.add(deployment.author_id)
            owner_id = await self._project_owner(deployment.project_id)
            if owner_id:
                recipients.add(owner_id)
        except DeployGateError as exc:
            logger.warning(
                "recipient_lookup_failed",
                deployment_id=event.deployment_id,
                kind=event.kind,
                error=str(exc),
            )

        recipients.discard("")
        return recipients

    async def _project_owner(self, project_id: str) -> str | None:
        cache_key = f"project:{project_id}:owner"
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached:
                return str(cached)

        project = await self._project_repo.get_by_id(project_id)
        if project is None:
            logger.warning("recipient_project_missing", project_id=project_id)
            return None

        if self._cache is not None:
            await self._cache.set(cache_key, project.owner_id, ttl_seconds=self._owner_cache_ttl)
        return project.owner_id
