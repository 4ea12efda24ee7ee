"""Repository port interfaces (hexagonal architecture).

Every method either succeeds or raises
:class:`~deploygate.domain.errors.RepositoryError`. Repositories hand out
detached copies; callers mutate a copy and write it back with
``compare_and_swap``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from deploygate.domain.models.approval import Approval
from deploygate.domain.models.deployment import Deployment, DeploymentStatus
from deploygate.domain.models.directory import Project, User
from deploygate.domain.models.job import LogLine


class DeploymentRepository(ABC):
    """Port for deployment persistence."""

    @abstractmethod
    async def save(self, deployment: Deployment) -> Deployment:
        """Persist a new deployment."""

    @abstractmethod
    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        """Retrieve a deployment by ID."""

    @abstractmethod
    async def list_by_status(
        self, status: DeploymentStatus, limit: int = 100, offset: int = 0
    ) -> list[Deployment]:
        """List deployments by status."""

    @abstractmethod
    async def compare_and_swap(
        self, deployment: Deployment, expected_revision: int
    ) -> bool:
        """Store ``deployment`` only if the stored revision still matches.

        Returns False (and stores nothing) when another writer got there
        first.
        """


class ApprovalRepository(ABC):
    """Port for approval persistence."""

    @abstractmethod
    async def save_all(self, approvals: list[Approval]) -> list[Approval]:
        """Persist new approvals."""

    @abstractmethod
    async def get_by_id(self, approval_id: str) -> Approval | None:
        """Retrieve an approval by ID."""

    @abstractmethod
    async def list_by_deployment(self, deployment_id: str) -> list[Approval]:
        """List approvals for a deployment ordered by level."""

    @abstractmethod
    async def compare_and_swap(self, approval: Approval, expected_revision: int) -> bool:
        """Store ``approval`` only if the stored revision still matches."""

    @abstractmethod
    async def delete_by_deployment(self, deployment_id: str) -> int:
        """Delete every approval owned by a deployment."""


class DeploymentLogRepository(ABC):
    """Append-only log stream keyed by deployment id and sequence number."""

    @abstractmethod
    async def append(self, deployment_id: str, lines: list[LogLine]) -> list[LogLine]:
        """Append lines, assigning sequence numbers.

        Lines whose ``(job_ref, offset)`` is already stored are skipped;
        the stored copies of the newly appended lines are returned.
        """

    @abstractmethod
    async def list_by_deployment(
        self, deployment_id: str, after_sequence: int = 0
    ) -> list[LogLine]:
        """Return lines in sequence order."""

    @abstractmethod
    async def offsets(self, deployment_id: str) -> dict[str, int]:
        """Number of lines already stored per job ref key."""


class ProjectRepository(ABC):
    @abstractmethod
    async def get_by_id(self, project_id: str) -> Project | None:
        """Retrieve a project by ID."""


class UserRepository(ABC):
    @abstractmethod
    async def get_by_id(self, user_id: str) -> User | None:
        """Retrieve a user by ID."""
