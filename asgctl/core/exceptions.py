"""Custom exception hierarchy for asgctl.

All controller errors inherit from AsgctlError, so callers (the event
router, the HTTP endpoint) can catch every orchestration failure with a
single except clause and still tell the kinds apart.
"""

from __future__ import annotations


class AsgctlError(Exception):
    """Base exception for all asgctl errors."""


class NotFound(AsgctlError):
    """Raised when an instance, group or launch template does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' not found")


class UpstreamUnavailable(AsgctlError):
    """Raised on transport or API failure of the control plane or recommender."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class EmptyInput(AsgctlError):
    """Raised when a selection is required from an empty recommendation list."""


class ProvisioningError(AsgctlError):
    """Base for failures while acquiring new capacity."""


class ProvisioningTimeout(ProvisioningError):
    """Raised when a polling barrier exceeds its deadline."""

    def __init__(self, what: str, timeout: float, pending: tuple[str, ...] = ()) -> None:
        self.what = what
        self.timeout = timeout
        self.pending = pending
        detail = f" (still waiting on {', '.join(pending)})" if pending else ""
        super().__init__(f"Timed out after {timeout:g}s waiting for {what}{detail}")


class ProvisioningFailed(ProvisioningError):
    """Raised when a spot request reaches a terminal state without an instance."""

    def __init__(self, request_id: str, state: str, status: str = "") -> None:
        self.request_id = request_id
        self.state = state
        self.status = status
        suffix = f": {status}" if status else ""
        super().__init__(f"Spot request {request_id} is {state}{suffix}")


class MembershipError(AsgctlError):
    """Base for failed group membership mutations."""

    def __init__(self, group: str, instance_ids: tuple[str, ...], reason: str) -> None:
        self.group = group
        self.instance_ids = instance_ids
        self.reason = reason
        super().__init__(self._describe())

    def _describe(self) -> str:
        return f"{self.instance_ids} / {self.group}: {self.reason}"


class AttachFailed(MembershipError):
    """Raised when instances cannot be attached to a group."""

    def _describe(self) -> str:
        return f"Failed to attach {', '.join(self.instance_ids)} to {self.group}: {self.reason}"


class DetachFailed(MembershipError):
    """Raised when instances cannot be detached from a group."""

    def _describe(self) -> str:
        return f"Failed to detach {', '.join(self.instance_ids)} from {self.group}: {self.reason}"


class InvalidEvent(AsgctlError):
    """Raised when an inbound event lacks the data its handler needs."""


class ConfigurationError(AsgctlError):
    """Raised for invalid configuration or missing required settings."""
