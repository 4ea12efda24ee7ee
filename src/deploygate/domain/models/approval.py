"""Approval records gating a deployment."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from deploygate.domain.errors import AlreadyDecidedError, ValidationError
from deploygate.domain.models.base import DomainEntity, utc_now, ValueObject


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


def decision_status(decision: ApprovalDecision) -> ApprovalStatus:
    """The status an approval ends up in after ``decision``."""
    if decision == ApprovalDecision.APPROVE:
        return ApprovalStatus.APPROVED
    return ApprovalStatus.REJECTED


class ApprovalReadiness(str, Enum):
    """What a set of approvals means for its deployment."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApproverSpec(ValueObject):
    """An approver requested at creation time; lower levels decide first."""

    approver_id: str
    level: int = 1
    approver_name: str = ""


class Approval(DomainEntity):
    """One approver's decision on one deployment."""

    deployment_id: str
    approver_id: str
    approver_name: str = ""
    level: int = 1
    status: ApprovalStatus = ApprovalStatus.PENDING
    comment: str | None = None
    decided_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def decide(self, decision: ApprovalDecision, comment: str | None = None) -> None:
        if not self.is_pending:
            raise AlreadyDecidedError(
                f"Approval {self.id} was already {self.status.value}"
            )
        self.status = decision_status(decision)
        self.comment = comment
        self.decided_at = utc_now()
        self.touch()


def validate_approvers(approvers: list[ApproverSpec]) -> None:
    """Reject approver lists that could never be decided sensibly."""
    if not approvers:
        raise ValidationError("At least one approver is required")
    seen: set[tuple[str, int]] = set()
    for spec in approvers:
        if not spec.approver_id:
            raise ValidationError("Approver id must not be empty")
        if spec.level < 1:
            raise ValidationError("Approval levels start at 1")
        key = (spec.approver_id, spec.level)
        if key in seen:
            raise ValidationError(
                f"Approver {spec.approver_id} listed twice at level {spec.level}"
            )
        seen.add(key)


def lowest_pending_level(approvals: list[Approval]) -> int | None:
    pending = [a.level for a in approvals if a.is_pending]
    return min(pending) if pending else None


def derive_readiness(approvals: list[Approval]) -> ApprovalReadiness:
    """Any rejection rejects; all approved approves; otherwise pending."""
    if any(a.status == ApprovalStatus.REJECTED for a in approvals):
        return ApprovalReadiness.REJECTED
    if approvals and all(a.status == ApprovalStatus.APPROVED for a in approvals):
        return ApprovalReadiness.APPROVED
    return ApprovalReadiness.PENDING
