"""
InstallState — the single persisted record of installation progress.

Serialized to ``<state_dir>/install.json`` and loaded at the start of
every invocation. It records only which *phase* last completed; whether
an individual resource exists is always re-derived from the live system.

The phase moves forward only. The two ways down are explicit operator
actions: ``reset()`` (back to not_started) and ``reopen()`` (complete →
resources_provisioned, the reconfigure path).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from deployctl.core.errors import PhaseRegressionError


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class InstallPhase(StrEnum):
    """Last successfully completed phase, in execution order."""

    NOT_STARTED = "not_started"
    DEPENDENCIES_READY = "dependencies_ready"
    RESOURCES_PROVISIONED = "resources_provisioned"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, InstallPhase):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, InstallPhase):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, InstallPhase):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, InstallPhase):
            return NotImplemented
        return self.rank >= other.rank


_PHASE_ORDER = [
    InstallPhase.NOT_STARTED,
    InstallPhase.DEPENDENCIES_READY,
    InstallPhase.RESOURCES_PROVISIONED,
    InstallPhase.COMPLETE,
]


class RunRecord(BaseModel):
    """Summary of the last run that touched the state file."""

    operation_id: str = ""
    command: str = ""
    started_at: str = ""
    # Time of the last phase commit of that run
    ended_at: str = ""
    status: str = ""  # ok, paused
    phase_before: str = ""
    phase_after: str = ""


class InstallState(BaseModel):
    """Root state model — serialized to install.json.

    Human-inspectable and disposable: deleting the file forces a fresh
    run, and every provisioner's idempotency makes that safe.
    """

    schema_version: int = 1

    phase: InstallPhase = InstallPhase.NOT_STARTED
    project_path: str | None = None

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    last_run: RunRecord = Field(default_factory=RunRecord)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def advance(self, phase: InstallPhase) -> None:
        """Move to ``phase``. Moving backwards is refused."""
        if phase < self.phase:
            raise PhaseRegressionError(
                f"Refusing to move install phase back from "
                f"'{self.phase}' to '{phase}' (use reset or --reconfigure)"
            )
        self.phase = phase

    def reopen(self) -> None:
        """Re-enter resources_provisioned from complete (reconfigure)."""
        if self.phase != InstallPhase.COMPLETE:
            raise PhaseRegressionError(
                f"Reconfigure is only possible from 'complete' (current: '{self.phase}')"
            )
        self.phase = InstallPhase.RESOURCES_PROVISIONED

    def reset(self) -> None:
        """Back to a fresh, never-installed state."""
        self.phase = InstallPhase.NOT_STARTED
        self.project_path = None
        self.last_run = RunRecord()
