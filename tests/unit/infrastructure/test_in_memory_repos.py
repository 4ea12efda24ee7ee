"""Unit tests for in-memory repository implementations."""

from __future__ import annotations

import pytest

from deploygate.domain.errors import RepositoryError
from deploygate.domain.models.approval import Approval, ApprovalDecision
from deploygate.domain.models.deployment import Deployment, DeploymentSpec, DeploymentStatus
from deploygate.domain.models.job import LogLine
from deploygate.infrastructure.persistence.repositories.in_memory import (
    InMemoryApprovalRepository,
    InMemoryDeploymentLogRepository,
    InMemoryDeploymentRepository,
    InMemoryUserRepository,
)


def _line(job_ref: str, offset: int, message: str = "") -> LogLine:
    return LogLine(
        deployment_id="d-1",
        job_ref=job_ref,
        job_label=job_ref,
        offset=offset,
        message=message or f"{job_ref} line {offset}",
    )


class TestInMemoryDeploymentRepository:
    @pytest.mark.asyncio
    async def test_save_and_get(self, sample_spec: DeploymentSpec) -> None:
        repo = InMemoryDeploymentRepository()
        deployment = await repo.save(Deployment.from_spec(sample_spec))
        found = await repo.get_by_id(deployment.id)
        assert found is not None
        assert found.name == deployment.name
        assert found is not deployment

    @pytest.mark.asyncio
    async def test_save_twice_rejected(self, sample_spec: DeploymentSpec) -> None:
        repo = InMemoryDeploymentRepository()
        deployment = await repo.save(Deployment.from_spec(sample_spec))
        with pytest.raises(RepositoryError):
            await repo.save(deployment)

    @pytest.mark.asyncio
    async def test_get_missing(self) -> None:
        assert await InMemoryDeploymentRepository().get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_mutating_a_copy_does_not_leak(self, sample_spec: DeploymentSpec) -> None:
        repo = InMemoryDeploymentRepository()
        deployment = await repo.save(Deployment.from_spec(sample_spec))
        copy = await repo.get_by_id(deployment.id)
        assert copy is not None
        copy.begin_execution(copy.author)
        stored = await repo.get_by_id(deployment.id)
        assert stored is not None
        assert stored.status == DeploymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, sample_spec: DeploymentSpec) -> None:
        repo = InMemoryDeploymentRepository()
        deployment = await repo.save(Deployment.from_spec(sample_spec))

        first = await repo.get_by_id(deployment.id)
        second = await repo.get_by_id(deployment.id)
        assert first is not None and second is not None
        first.begin_execution(first.author)
        second.begin_execution(second.author)

        assert await repo.compare_and_swap(first, deployment.revision)
        assert not await repo.compare_and_swap(second, deployment.revision)

    @pytest.mark.asyncio
    async def test_list_by_status_paginates(self, sample_spec: DeploymentSpec) -> None:
        repo = InMemoryDeploymentRepository()
        saved = [await repo.save(Deployment.from_spec(sample_spec)) for _ in range(5)]

        page = await repo.list_by_status(DeploymentStatus.PENDING, limit=2, offset=2)

        assert [d.id for d in page] == [d.id for d in saved[2:4]]
        assert await repo.list_by_status(DeploymentStatus.SUCCESS) == []


class TestInMemoryApprovalRepository:
    @pytest.mark.asyncio
    async def test_list_sorted_by_level(self) -> None:
        repo = InMemoryApprovalRepository()
        await repo.save_all([
            Approval(deployment_id="d-1", approver_id="dave", level=2),
            Approval(deployment_id="d-1", approver_id="carol", level=1),
            Approval(deployment_id="d-2", approver_id="erin", level=1),
        ])
        approvals = await repo.list_by_deployment("d-1")
        assert [a.approver_id for a in approvals] == ["carol", "dave"]

    @pytest.mark.asyncio
    async def test_compare_and_swap(self) -> None:
        repo = InMemoryApprovalRepository()
        (approval,) = await repo.save_all([Approval(deployment_id="d-1", approver_id="carol")])
        updated = approval.clone()
        updated.decide(ApprovalDecision.APPROVE)

        assert await repo.compare_and_swap(updated, approval.revision)
        assert not await repo.compare_and_swap(updated, approval.revision)

    @pytest.mark.asyncio
    async def test_delete_by_deployment(self) -> None:
        repo = InMemoryApprovalRepository()
        await repo.save_all([
            Approval(deployment_id="d-1", approver_id="carol"),
            Approval(deployment_id="d-1", approver_id="dave", level=2),
        ])
        assert await repo.delete_by_deployment("d-1") == 2
        assert await repo.list_by_deployment("d-1") == []


class TestInMemoryDeploymentLogRepository:
    @pytest.mark.asyncio
    async def test_append_assigns_sequence(self) -> None:
        repo = InMemoryDeploymentLogRepository()
        stored = await repo.append("d-1", [_line("a", 0), _line("b", 0), _line("a", 1)])
        assert [line.sequence for line in stored] == [1, 2, 3]
        assert await repo.offsets("d-1") == {"a": 2, "b": 1}

    @pytest.mark.asyncio
    async def test_append_skips_known_offsets(self) -> None:
        repo = InMemoryDeploymentLogRepository()
        await repo.append("d-1", [_line("a", 0), _line("a", 1)])
        appended = await repo.append("d-1", [_line("a", 1), _line("a", 2)])
        assert [line.offset for line in appended] == [2]
        assert len(await repo.list_by_deployment("d-1")) == 3

    @pytest.mark.asyncio
    async def test_list_after_sequence(self) -> None:
        repo = InMemoryDeploymentLogRepository()
        await repo.append("d-1", [_line("a", 0), _line("a", 1), _line("a", 2)])
        tail = await repo.list_by_deployment("d-1", after_sequence=2)
        assert [line.offset for line in tail] == [2]


class TestInMemoryUserRepository:
    @pytest.mark.asyncio
    async def test_seeded_users(self, user_repo: InMemoryUserRepository) -> None:
        alice = await user_repo.get_by_id("alice")
        assert alice is not None
        assert alice.has_usable_email
        assert await user_repo.get_by_id("nobody") is None
