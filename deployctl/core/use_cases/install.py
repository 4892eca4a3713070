"""
Install use case — the run coordinator.

One invocation: take the run lock, load the persisted phase, run every
pending phase through the phase controller, record the run in the
audit ledger, release the lock. The lock is released on every exit
path, including errors, Ctrl-C and SIGTERM.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from deployctl.core.engine.phases import PhaseController, PhaseRunReport, build_phases
from deployctl.core.errors import DeployError
from deployctl.core.models.settings import DeploySettings
from deployctl.core.models.state import InstallPhase, InstallState, RunRecord
from deployctl.core.persistence.audit import AuditEntry, AuditWriter
from deployctl.core.persistence.run_lock import RunLock
from deployctl.core.persistence.state_file import StateStore, load_state, save_state
from deployctl.core.provisioners.base import ProvisionContext
from deployctl.core.reliability.executor import RetryingExecutor
from deployctl.core.reliability.remediation import RemediationContext
from deployctl.core.use_cases.backup import create_backup

if TYPE_CHECKING:
    from deployctl.adapters.registry import AdapterRegistry

logger = logging.getLogger(__name__)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


@dataclass
class InstallResult:
    """Result of one ``install`` invocation."""

    operation_id: str = ""
    phase_before: InstallPhase | None = None
    phase_after: InstallPhase | None = None
    report: PhaseRunReport | None = None
    reconfigured: bool = False
    backup_path: str | None = None

    error: str | None = None
    error_kind: str | None = None
    failed_phase: str | None = None
    failed_resource: str | None = None
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def paused(self) -> bool:
        return bool(self.report and self.report.paused)

    @property
    def status(self) -> str:
        if not self.ok:
            return "failed"
        return "paused" if self.paused else "ok"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "operation_id": self.operation_id,
            "status": self.status,
            "phase_before": str(self.phase_before) if self.phase_before else None,
            "phase_after": str(self.phase_after) if self.phase_after else None,
            "reconfigured": self.reconfigured,
        }
        if self.backup_path:
            result["backup"] = self.backup_path
        if self.report:
            result["report"] = self.report.to_dict()
        if self.error:
            result["error"] = self.error
            result["kind"] = self.error_kind
            result["phase"] = self.failed_phase
            result["resource"] = self.failed_resource
            if self.output:
                result["output"] = self.output
        return result


def effective_settings(settings: DeploySettings, state: InstallState) -> DeploySettings:
    """The recorded project path wins over configuration once recorded."""
    recorded = state.project_path
    if recorded and recorded != str(settings.project_root):
        logger.warning(
            "Configured project path %s differs from the recorded one %s — using the recorded path "
            "(reset the installation to move it)",
            settings.project_root,
            recorded,
        )
        return settings.model_copy(update={"project_path": recorded})
    return settings


@contextmanager
def mock_sandbox(settings: DeploySettings) -> Iterator[DeploySettings]:
    """Settings for a mock run, with state and project in a throwaway directory.

    The real state file and env files are copied in, so a mock run starts
    from the real phase. Nothing is written back and the sandbox is
    removed on exit.
    """
    state = load_state(settings.state_path)
    settings = effective_settings(settings, state)

    with tempfile.TemporaryDirectory(prefix="deployctl-mock-") as tmp:
        root = Path(tmp)
        sandbox = settings.model_copy(update={
            "state_dir": str(root / "state"),
            "project_path": str(root / "project"),
        })
        sandbox.state_root.mkdir()
        sandbox.project_root.mkdir()

        for name in (settings.env.path, settings.env.template):
            src = settings.project_root / name
            if src.is_file():
                dest = sandbox.project_root / name
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dest)

        if state.project_path:
            state.project_path = str(sandbox.project_root)
        save_state(state, sandbox.state_path)

        logger.info("Mock run in sandbox %s (real state and project are not modified)", root)
        yield sandbox


def run_install(
    settings: DeploySettings,
    *,
    registry: AdapterRegistry | None = None,
    reconfigure: bool = False,
    mock_mode: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> InstallResult:
    """Run every pending install phase.

    Args:
        settings: Loaded deployment settings.
        registry: Pre-built adapters (default: real adapters, or fakes
            with ``mock_mode``).
        reconfigure: Re-enter the resources phase of a complete install.
        mock_mode: Build fake adapters when no registry is given and run
            against a sandbox copy of the state and project.
        sleep: Used for backoff and settle waits.

    Returns:
        InstallResult; terminal failures are reported in ``error``.
    """
    if mock_mode:
        with mock_sandbox(settings) as sandbox:
            return _run_install(sandbox, registry, reconfigure, True, sleep)
    return _run_install(settings, registry, reconfigure, False, sleep)


def _run_install(
    settings: DeploySettings,
    registry: AdapterRegistry | None,
    reconfigure: bool,
    mock_mode: bool,
    sleep: Callable[[float], None],
) -> InstallResult:
    result = InstallResult(operation_id=generate_operation_id())
    store = StateStore(settings.state_path)
    audit = AuditWriter(settings.audit_path)
    start = time.monotonic()
    status = "interrupted"

    try:
        with RunLock(settings.lock_path, command="install"):
            state = store.load()
            result.phase_before = state.phase
            result.phase_after = state.phase
            settings = effective_settings(settings, state)

            if registry is None:
                from deployctl.adapters.registry import build_registry

                registry = build_registry(settings, mock_mode=mock_mode)

            if reconfigure:
                _reopen(state, store, result)

            state.last_run = RunRecord(
                operation_id=result.operation_id,
                command="install",
                started_at=datetime.now(UTC).isoformat(),
                status="ok",
                phase_before=str(result.phase_before),
            )

            _warn_low_disk(settings, registry)

            remediation_ctx = RemediationContext(registry=registry, settings=settings, sleep=sleep)
            ctx = ProvisionContext(
                settings=settings,
                registry=registry,
                executor=RetryingExecutor.from_settings(remediation_ctx),
                sleep=sleep,
            )
            controller = PhaseController(
                build_phases(ctx), store, project_path=str(settings.project_root),
            )

            pending = controller.pending(state)
            if not pending:
                logger.info("Installation already complete — nothing to do")
            elif state.phase >= InstallPhase.DEPENDENCIES_READY:
                result.backup_path = _pre_install_backup(settings)

            try:
                result.report = controller.run(state)
            finally:
                result.phase_after = state.phase

            if result.report.paused:
                logger.info(result.report.message)

    except DeployError as e:
        result.error = e.message
        result.error_kind = str(e.kind)
        result.failed_phase = e.phase
        result.failed_resource = e.resource
        result.output = e.output
        logger.error("Install failed: %s", e.message)
    finally:
        if result.error is not None or result.report is not None:
            status = result.status
        _audit_install(audit, result, status, int((time.monotonic() - start) * 1000))

    return result


def _reopen(state: InstallState, store: StateStore, result: InstallResult) -> None:
    if state.phase != InstallPhase.COMPLETE:
        logger.info("Installation is at '%s' — running pending phases", state.phase)
        return
    state.reopen()
    store.save(state)
    result.reconfigured = True
    logger.info("Reconfigure: re-entering '%s'", state.phase)


def _pre_install_backup(settings: DeploySettings) -> str | None:
    """Archive the project before phases that rewrite it. Failure only warns."""
    if not settings.backup.before_install:
        return None
    root = settings.project_root
    if not root.is_dir() or not any(child.name != "backups" for child in root.iterdir()):
        logger.debug("Nothing to back up in %s", root)
        return None
    backup = create_backup(settings, keep=settings.backup.keep)
    if backup.error:
        logger.warning("Pre-install backup skipped: %s", backup.error)
        return None
    return str(backup.path)


def _warn_low_disk(settings: DeploySettings, registry: AdapterRegistry) -> None:
    free = registry.host.free_disk_gb(str(settings.project_root))
    if free is not None and free < settings.disk.min_free_gb:
        logger.warning(
            "Low disk space: %.1f GB available (%.1f GB recommended)", free, settings.disk.min_free_gb,
        )


def _audit_install(audit: AuditWriter, result: InstallResult, status: str, duration_ms: int) -> None:
    audit.write(AuditEntry(
        operation_id=result.operation_id,
        command="install",
        phase_before=str(result.phase_before or ""),
        phase_after=str(result.phase_after or ""),
        phases_run=result.report.phase_names if result.report else [],
        status=status,
        error_kind=result.error_kind,
        resource=result.failed_resource,
        duration_ms=duration_ms,
        errors=[result.error] if result.error else [],
        context={"reconfigure": result.reconfigured, "failed_phase": result.failed_phase},
    ))
