"""Error taxonomy shared by every component of the engine.

Each error carries a stable ``kind`` so callers (the HTTP layer, a CLI,
tests) can decide whether to retry without parsing messages.
"""

from __future__ import annotations


class DeployGateError(Exception):
    """Base class for all typed errors raised by the engine."""

    kind: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(DeployGateError):
    """Bad input; rejected before any state mutation."""

    kind = "validation_error"


class AuthorizationError(DeployGateError):
    """The caller is not allowed to perform the operation."""

    kind = "unauthorized"


class NotFoundError(DeployGateError):
    """A referenced entity does not exist."""

    kind = "not_found"


class StateConflict(DeployGateError):
    """Operation is invalid for the entity's current status.

    Nothing was mutated; the caller may refetch and retry.
    """

    kind = "state_conflict"


class AlreadyDecidedError(StateConflict):
    """An approval has already been approved or rejected."""

    kind = "already_decided"


class OutOfOrderError(StateConflict):
    """An approval was decided while a lower level is still pending."""

    kind = "out_of_order"


class UpstreamUnavailable(DeployGateError):
    """The build server or the mail transport could not be reached."""

    kind = "upstream_unavailable"


class RepositoryError(DeployGateError):
    """The storage collaborator failed.

    Transient errors may be retried by re-running the whole operation.
    """

    kind = "repository_error"

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ConfigurationError(DeployGateError):
    """The engine was wired or configured inconsistently."""

    kind = "configuration_error"
