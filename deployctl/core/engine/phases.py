"""
Phase controller — ordered, committed groups of provisioning tasks.

A phase runs only if its target is above the persisted phase. The
state file is written only after every task of the phase has verified,
so an interrupted or failed phase leaves the installation at its last
verified phase and the next run picks up exactly there.

After the dependency phase the controller stops on purpose: freshly
installed runtimes are only on PATH in a new login shell, so the
operator opens one and runs ``install`` again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from deployctl.core.errors import DeployError, ErrorKind, PhaseFailedError
from deployctl.core.models.state import InstallPhase, InstallState
from deployctl.core.persistence.state_file import StateStore
from deployctl.core.provisioners.base import PhaseTask, ProvisionContext, ProvisionResult
from deployctl.core.provisioners.database import DatabaseProvisioner, DatabaseRoleProvisioner
from deployctl.core.provisioners.env_file import EnvFileProvisioner
from deployctl.core.provisioners.packages import PackageSetProvisioner
from deployctl.core.provisioners.service_unit import ServiceUnitProvisioner
from deployctl.core.provisioners.tasks import BuildTask, SourceSyncTask
from deployctl.core.services.credentials import ResolvedPassword, resolve_database_password

logger = logging.getLogger(__name__)

PAUSE_MESSAGE = (
    "System dependencies are installed. Open a new shell (so newly "
    "installed tools are on PATH) and run 'deployctl install' again."
)


@dataclass
class Phase:
    name: str
    target: InstallPhase
    tasks: list[PhaseTask]
    pause_after: bool = False


@dataclass
class PhaseOutcome:
    name: str
    target: InstallPhase
    results: list[ProvisionResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "target": str(self.target),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class PhaseRunReport:
    phase_before: InstallPhase
    phase_after: InstallPhase
    phases: list[PhaseOutcome] = field(default_factory=list)
    paused: bool = False
    message: str = ""

    @property
    def phase_names(self) -> list[str]:
        return [p.name for p in self.phases]

    @property
    def warnings(self) -> list[str]:
        return [
            f"{r.resource}: {w}"
            for outcome in self.phases
            for r in outcome.results
            for w in r.warnings
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_before": str(self.phase_before),
            "phase_after": str(self.phase_after),
            "paused": self.paused,
            "message": self.message,
            "phases": [p.to_dict() for p in self.phases],
            "warnings": self.warnings,
        }


class PhaseController:
    """Runs pending phases in order and commits each one on success."""

    def __init__(self, phases: list[Phase], store: StateStore, *, project_path: str | None = None):
        self._phases = phases
        self._store = store
        self._project_path = project_path

    @property
    def phases(self) -> list[Phase]:
        return list(self._phases)

    def pending(self, state: InstallState) -> list[Phase]:
        return [p for p in self._phases if p.target > state.phase]

    def run(self, state: InstallState) -> PhaseRunReport:
        """Dispatch every pending phase.

        Raises:
            PhaseFailedError: A task failed or did not verify (nothing
                was persisted for that phase).
        """
        report = PhaseRunReport(phase_before=state.phase, phase_after=state.phase)

        for phase in self.pending(state):
            logger.info("Phase '%s' starting (target: %s)", phase.name, phase.target)
            outcome = PhaseOutcome(name=phase.name, target=phase.target)

            for task in phase.tasks:
                outcome.results.append(self._run_task(phase, task))

            state.advance(phase.target)
            if phase.target == InstallPhase.DEPENDENCIES_READY and self._project_path:
                state.project_path = self._project_path
            state.last_run.phase_after = str(phase.target)
            state.last_run.ended_at = datetime.now(UTC).isoformat()
            if phase.pause_after:
                state.last_run.status = "paused"
            self._store.save(state)
            logger.info("Phase '%s' committed: %s", phase.name, phase.target)

            report.phases.append(outcome)
            report.phase_after = state.phase

            if phase.pause_after:
                report.paused = True
                report.message = PAUSE_MESSAGE
                logger.info("Pausing after phase '%s'", phase.name)
                break

        return report

    def _run_task(self, phase: Phase, task: PhaseTask) -> ProvisionResult:
        try:
            result = task.ensure()
        except DeployError as e:
            resource = e.resource or task.resource
            raise PhaseFailedError(
                f"Phase '{phase.name}' failed at {resource}: {e.message}",
                kind=e.kind,
                resource=resource,
                phase=phase.name,
                output=e.output,
            ) from e

        if not result.verified:
            raise PhaseFailedError(
                f"Phase '{phase.name}' failed at {task.resource}: "
                f"verification failed ({'; '.join(result.problems)})",
                kind=ErrorKind.UNCLASSIFIED,
                resource=task.resource,
                phase=phase.name,
            )
        return result


def build_phases(ctx: ProvisionContext, password: ResolvedPassword | None = None) -> list[Phase]:
    """The three install phases, wired to ``ctx``."""
    if password is None:
        password = resolve_database_password(ctx.settings)

    return [
        Phase(
            name="dependencies",
            target=InstallPhase.DEPENDENCIES_READY,
            tasks=[PackageSetProvisioner(ctx)],
            pause_after=True,
        ),
        Phase(
            name="resources",
            target=InstallPhase.RESOURCES_PROVISIONED,
            tasks=[
                DatabaseRoleProvisioner(ctx, password),
                DatabaseProvisioner(ctx),
                EnvFileProvisioner(ctx, password),
                SourceSyncTask(ctx),
                BuildTask(ctx),
            ],
        ),
        Phase(
            name="service",
            target=InstallPhase.COMPLETE,
            tasks=[ServiceUnitProvisioner(ctx)],
        ),
    ]
