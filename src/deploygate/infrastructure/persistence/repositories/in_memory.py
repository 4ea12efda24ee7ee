"""In-memory repository implementations for development and testing.

Stores hold detached copies: callers never share an instance with the
store, so compare-and-swap behaves as it does against a database.
"""

from __future__ import annotations

import asyncio

from deploygate.domain.errors import RepositoryError
from deploygate.domain.models.approval import Approval
from deploygate.domain.models.deployment import Deployment, DeploymentStatus
from deploygate.domain.models.directory import Project, User
from deploygate.domain.models.job import LogLine
from deploygate.domain.ports.repositories import (
    ApprovalRepository,
    DeploymentLogRepository,
    DeploymentRepository,
    ProjectRepository,
    UserRepository,
)


class InMemoryDeploymentRepository(DeploymentRepository):
    """In-memory deployment repository for testing and demo use."""

    def __init__(self) -> None:
        self._store: dict[str, Deployment] = {}

    async def save(self, deployment: Deployment) -> Deployment:
        if deployment.id in self._store:
            raise RepositoryError(f"Deployment {deployment.id} already exists")
        self._store[deployment.id] = deployment.clone()
        return deployment

    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        stored = self._store.get(deployment_id)
        return stored.clone() if stored else None

    async def list_by_status(
        self, status: DeploymentStatus, limit: int = 100, offset: int = 0
    ) -> list[Deployment]:
        items = [d for d in self._store.values() if d.status == status]
        items.sort(key=lambda d: d.created_at)
        return [d.clone() for d in items[offset:offset + limit]]

    async def compare_and_swap(self, deployment: Deployment, expected_revision: int) -> bool:
        stored = self._store.get(deployment.id)
        if stored is None or stored.revision != expected_revision:
            return False
        self._store[deployment.id] = deployment.clone()
        return True

    def clear(self) -> None:
        self._store.clear()


class InMemoryApprovalRepository(ApprovalRepository):
    """In-memory approval repository for testing and demo use."""

    def __init__(self) -> None:
        self._store: dict[str, Approval] = {}

    async def save_all(self, approvals: list[Approval]) -> list[Approval]:
        for approval in approvals:
            if approval.id in self._store:
                raise RepositoryError(f"Approval {approval.id} already exists")
        for approval in approvals:
            self._store[approval.id] = approval.clone()
        return approvals

    async def get_by_id(self, approval_id: str) -> Approval | None:
        stored = self._store.get(approval_id)
        return stored.clone() if stored else None

    async def list_by_deployment(self, deployment_id: str) -> list[Approval]:
        items = [a for a in self._store.values() if a.deployment_id == deployment_id]
        items.sort(key=lambda a: (a.level, a.created_at))
        return [a.clone() for a in items]

    async def compare_and_swap(self, approval: Approval, expected_revision: int) -> bool:
        stored = self._store.get(approval.id)
        if stored is None or stored.revision != expected_revision:
            return False
        self._store[approval.id] = approval.clone()
        return True

    async def delete_by_deployment(self, deployment_id: str) -> int:
        doomed = [a.id for a in self._store.values() if a.deployment_id == deployment_id]
        for approval_id in doomed:
            del self._store[approval_id]
        return len(doomed)


class InMemoryDeploymentLogRepository(DeploymentLogRepository):
    """Append-only log store; ``(job_ref, offset)`` is unique per deployment."""

    def __init__(self) -> None:
        self._lines: dict[str, list[LogLine]] = {}
        self._seen: dict[str, set[tuple[str, int]]] = {}
        self._lock = asyncio.Lock()

    async def append(self, deployment_id: str, lines: list[LogLine]) -> list[LogLine]:
        async with self._lock:
            stream = self._lines.setdefault(deployment_id, [])
            seen = self._seen.setdefault(deployment_id, set())
            appended: list[LogLine] = []
            for line in lines:
                identity = (line.job_ref, line.offset)
                if identity in seen:
                    continue
                seen.add(identity)
                stored = line.model_copy(
                    update={"deployment_id": deployment_id, "sequence": len(stream) + 1}
                )
                stream.append(stored)
                appended.append(stored)
            return appended

    async def list_by_deployment(
        self, deployment_id: str, after_sequence: int = 0
    ) -> list[LogLine]:
        return [
            line for line in self._lines.get(deployment_id, [])
            if line.sequence > after_sequence
        ]

    async def offsets(self, deployment_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for line in self._lines.get(deployment_id, []):
            counts[line.job_ref] = max(counts.get(line.job_ref, 0), line.offset + 1)
        return counts


class InMemoryProjectRepository(ProjectRepository):
    def __init__(self, projects: list[Project] | None = None) -> None:
        self._store: dict[str, Project] = {p.id: p for p in projects or []}

    async def get_by_id(self, project_id: str) -> Project | None:
        stored = self._store.get(project_id)
        return stored.clone() if stored else None

    async def save(self, project: Project) -> Project:
        self._store[project.id] = project.clone()
        return project


class InMemoryUserRepository(UserRepository):
    def __init__(self, users: list[User] | None = None) -> None:
        self._store: dict[str, User] = {u.id: u for u in users or []}

    async def get_by_id(self, user_id: str) -> User | None:
        stored = self._store.get(user_id)
        return stored.clone() if stored else None

    async def save(self, user: User) -> User:
        self._store[user.id] = user.clone()
        return user
