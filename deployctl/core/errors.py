"""
Error taxonomy for the orchestrator.

Adapters never raise; they return failed receipts. Exceptions start at
the provisioner level, once the retrying executor has given up, and
carry enough context (kind, phase, resource, tool output) for the CLI
to tell the operator where the run stopped.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """How a failure is treated by the control loop."""

    TRANSIENT_INFRASTRUCTURE = "transient_infrastructure"  # retried automatically
    MISSING_DEPENDENCY = "missing_dependency"              # remediated once, then retried
    CONFIGURATION_INVALID = "configuration_invalid"        # warning only
    RESOURCE_CONFLICT = "resource_conflict"                # terminal, no retry
    UNCLASSIFIED = "unclassified"                          # terminal, output attached


class DeployError(Exception):
    """Base class for terminal orchestrator failures."""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        resource: str | None = None,
        phase: str | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.resource = resource
        self.phase = phase
        self.output = output

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": str(self.kind),
            "phase": self.phase,
            "resource": self.resource,
            "output": self.output,
        }


class ResourceConflictError(DeployError):
    """Another orchestrator process holds the run lock."""

    kind = ErrorKind.RESOURCE_CONFLICT


class ProvisionError(DeployError):
    """A resource could not be brought to its required shape."""


class PhaseFailedError(DeployError):
    """A phase aborted; nothing was persisted for it."""


class PhaseRegressionError(DeployError):
    """Attempt to move the install phase backwards without reset."""


class ConfigError(Exception):
    """Raised when deploy.yml is missing, unreadable, or invalid."""
