"""
Reset and unlock use cases — operator overrides.

``reset`` returns the install state to not_started and clears the run
lock. With ``clean`` it also removes what the installer created: the
service unit, the database and the role. The environment file is only
backed up, never deleted. ``unlock`` removes a stale run lock and
nothing else.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from deployctl.core.errors import ResourceConflictError
from deployctl.core.models.settings import DeploySettings
from deployctl.core.persistence.audit import AuditEntry, AuditWriter
from deployctl.core.persistence.run_lock import force_release, holder_alive, read_holder
from deployctl.core.persistence.state_file import StateStore
from deployctl.core.provisioners.base import ProvisionContext
from deployctl.core.provisioners.database import DatabaseProvisioner, DatabaseRoleProvisioner
from deployctl.core.provisioners.env_file import EnvFileProvisioner
from deployctl.core.provisioners.service_unit import ServiceUnitProvisioner
from deployctl.core.reliability.executor import RetryingExecutor
from deployctl.core.reliability.remediation import RemediationContext
from deployctl.core.use_cases.install import generate_operation_id, mock_sandbox

if TYPE_CHECKING:
    from deployctl.adapters.registry import AdapterRegistry

logger = logging.getLogger(__name__)


@dataclass
class ResetResult:
    operation_id: str = ""
    phase_before: str = ""
    lock_removed: bool = False
    cleaned: list[str] = field(default_factory=list)
    teardown_errors: list[str] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.teardown_errors

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "operation_id": self.operation_id,
            "phase_before": self.phase_before,
            "lock_removed": self.lock_removed,
            "cleaned": self.cleaned,
        }
        if self.teardown_errors:
            result["teardown_errors"] = self.teardown_errors
        if self.error:
            result["error"] = self.error
            result["kind"] = self.error_kind
        return result


@dataclass
class UnlockResult:
    removed: bool = False
    holder: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"removed": self.removed, "holder": self.holder}


def reset_installation(
    settings: DeploySettings,
    *,
    clean: bool = False,
    registry: AdapterRegistry | None = None,
    mock_mode: bool = False,
) -> ResetResult:
    """Forget install progress; with ``clean``, tear resources down too.

    Refuses while a live process holds the run lock. ``mock_mode`` works
    on a sandbox copy of the state and project.
    """
    if mock_mode:
        with mock_sandbox(settings) as sandbox:
            return _reset(sandbox, clean, registry, True)
    return _reset(settings, clean, registry, False)


def _reset(
    settings: DeploySettings,
    clean: bool,
    registry: AdapterRegistry | None,
    mock_mode: bool,
) -> ResetResult:
    result = ResetResult(operation_id=generate_operation_id())
    store = StateStore(settings.state_path)
    start = time.monotonic()

    holder = read_holder(settings.lock_path)
    if holder is not None and holder_alive(holder):
        err = ResourceConflictError(
            f"A deployctl run is in progress (pid {holder.get('pid')}); refusing to reset",
            resource="run-lock",
        )
        result.error = err.message
        result.error_kind = str(err.kind)
        _audit(settings, "reset", result, start)
        return result

    state = store.load()
    result.phase_before = str(state.phase)

    if clean:
        if registry is None:
            from deployctl.adapters.registry import build_registry

            registry = build_registry(settings, mock_mode=mock_mode)
        _teardown(settings, registry, result)

    state.reset()
    store.save(state)
    result.lock_removed = force_release(settings.lock_path)
    logger.info("Installation reset (was: %s)", result.phase_before)

    _audit(settings, "reset", result, start)
    return result


def _teardown(settings: DeploySettings, registry: AdapterRegistry, result: ResetResult) -> None:
    ctx = ProvisionContext(
        settings=settings,
        registry=registry,
        executor=RetryingExecutor(RemediationContext(registry=registry, settings=settings)),
    )
    # Reverse creation order
    for provisioner in (
        ServiceUnitProvisioner(ctx),
        EnvFileProvisioner(ctx),
        DatabaseProvisioner(ctx),
        DatabaseRoleProvisioner(ctx),
    ):
        receipt = provisioner.teardown()
        if receipt.failed:
            message = f"{provisioner.resource}: {receipt.error}"
            result.teardown_errors.append(message)
            logger.error("Teardown failed — %s", message)
        elif receipt.ok:
            result.cleaned.append(provisioner.resource)
            logger.info("Teardown: %s removed", provisioner.resource)
        else:
            logger.info("Teardown: %s skipped (%s)", provisioner.resource, receipt.output)


def unlock_installation(settings: DeploySettings) -> UnlockResult:
    """Remove the run lock regardless of its holder."""
    result = UnlockResult(holder=read_holder(settings.lock_path))
    result.removed = force_release(settings.lock_path)
    AuditWriter(settings.audit_path).write(AuditEntry(
        operation_id=generate_operation_id(),
        command="unlock",
        status="ok" if result.removed else "skipped",
        context={"holder": result.holder or {}},
    ))
    return result


def _audit(settings: DeploySettings, command: str, result: ResetResult, start: float) -> None:
    AuditWriter(settings.audit_path).write(AuditEntry(
        operation_id=result.operation_id,
        command=command,
        phase_before=result.phase_before,
        phase_after="not_started" if result.error is None else result.phase_before,
        status="ok" if result.ok else "failed",
        error_kind=result.error_kind,
        duration_ms=int((time.monotonic() - start) * 1000),
        errors=[e for e in [result.error, *result.teardown_errors] if e],
        context={"clean": bool(result.cleaned or result.teardown_errors), "cleaned": result.cleaned},
    ))
