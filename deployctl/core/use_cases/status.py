"""
Status use case — read-only diagnostics of an installation.

Reuses the provisioners' verify checks, so "healthy" here means the
same thing it means to ``install``. Nothing is created, started or
written. Resources belonging to phases that were never committed are
not checked; the incomplete installation is reported instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from deployctl.core.models.settings import DeploySettings
from deployctl.core.models.state import InstallPhase, InstallState
from deployctl.core.persistence.run_lock import holder_alive, read_holder
from deployctl.core.persistence.state_file import load_state
from deployctl.core.provisioners.base import ProvisionContext, Provisioner
from deployctl.core.provisioners.database import DatabaseProvisioner, DatabaseRoleProvisioner
from deployctl.core.provisioners.env_file import EnvFileProvisioner
from deployctl.core.provisioners.packages import PackageSetProvisioner
from deployctl.core.provisioners.service_unit import ServiceUnitProvisioner
from deployctl.core.reliability.executor import RetryingExecutor
from deployctl.core.reliability.remediation import RemediationContext
from deployctl.core.services.env_file import is_placeholder, parse_env_file, redact

if TYPE_CHECKING:
    from deployctl.adapters.registry import AdapterRegistry

logger = logging.getLogger(__name__)

# Exit codes above this are reserved by shells
MAX_EXIT_CODE = 100

JOURNAL_SCAN_LINES = 100
_JOURNAL_ERROR = re.compile(r"error", re.IGNORECASE)


class Severity(StrEnum):
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Issue:
    severity: Severity
    subject: str
    remediation_hint: str
    details: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "severity": str(self.severity),
            "subject": self.subject,
            "remediation_hint": self.remediation_hint,
            "details": self.details,
        }


@dataclass
class DiagnosticsReport:
    phase: InstallPhase
    issues: list[Issue] = field(default_factory=list)
    checks_run: list[str] = field(default_factory=list)
    # Managed env keys with secret values redacted
    environment: dict[str, str] = field(default_factory=dict)

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == Severity.WARNING)

    @property
    def healthy(self) -> bool:
        return self.error_count == 0

    @property
    def exit_code(self) -> int:
        return min(self.error_count, MAX_EXIT_CODE)

    def add(self, severity: Severity, subject: str, hint: str, details: str = "") -> None:
        self.issues.append(Issue(severity, subject, hint, details))

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": str(self.phase),
            "healthy": self.healthy,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "checks_run": self.checks_run,
            "issues": [i.to_dict() for i in self.issues],
            "environment": self.environment,
        }


_HINTS = {
    "packages": "run 'deployctl install' to install missing packages",
    "database-role": "run 'deployctl install' to recreate the role",
    "database": "run 'deployctl install' to recreate the database",
    "env-file": "run 'deployctl install' to regenerate the environment file",
    "service-unit": "run 'deployctl install --reconfigure' to recreate and start the service",
}


def diagnose(
    settings: DeploySettings,
    registry: AdapterRegistry,
    state: InstallState | None = None,
) -> DiagnosticsReport:
    """Check the live installation and report issues (read-only)."""
    if state is None:
        state = load_state(settings.state_path)

    report = DiagnosticsReport(phase=state.phase)
    ctx = ProvisionContext(
        settings=settings,
        registry=registry,
        executor=RetryingExecutor(RemediationContext(registry=registry, settings=settings)),
    )

    _check_binaries(report, settings, registry)
    db_reachable = _check_database(report, settings, registry)

    provisioners: list[tuple[InstallPhase, Provisioner]] = [
        (InstallPhase.RESOURCES_PROVISIONED, DatabaseRoleProvisioner(ctx, password=None)),
        (InstallPhase.RESOURCES_PROVISIONED, DatabaseProvisioner(ctx)),
        (InstallPhase.RESOURCES_PROVISIONED, EnvFileProvisioner(ctx)),
        (InstallPhase.COMPLETE, ServiceUnitProvisioner(ctx)),
    ]

    if state.phase >= InstallPhase.DEPENDENCIES_READY:
        _check_packages(report, PackageSetProvisioner(ctx))

    for phase, provisioner in provisioners:
        if state.phase < phase:
            continue
        if isinstance(provisioner, (DatabaseRoleProvisioner, DatabaseProvisioner)) and not db_reachable:
            continue
        _check_provisioner(report, provisioner)

    if state.phase < InstallPhase.COMPLETE:
        report.add(
            Severity.WARNING,
            "installation",
            "run 'deployctl install' to continue",
            f"installation is at phase '{state.phase}'",
        )

    _check_port(report, settings, registry)
    _check_journal(report, settings, registry)
    _check_disk(report, settings, registry)
    _check_lock(report, settings)
    report.environment = environment_summary(settings)

    logger.info(
        "Diagnostics: %d error(s), %d warning(s)", report.error_count, report.warning_count,
    )
    return report


# ── Individual checks ───────────────────────────────────────────


def _check_binaries(report: DiagnosticsReport, settings: DeploySettings, registry: AdapterRegistry) -> None:
    report.checks_run.append("binaries")
    search = settings.service.search_path()
    for binary in settings.binaries:
        if registry.host.which(binary, search) is None:
            runtime = settings.runtimes.get(binary)
            hint = "run 'deployctl install' to reinstall its runtime"
            if runtime is None:
                hint = f"install {binary} manually (no runtime configured)"
            report.add(Severity.ERROR, f"binary:{binary}", hint, f"{binary} not found on the search path")


def _check_database(report: DiagnosticsReport, settings: DeploySettings, registry: AdapterRegistry) -> bool:
    report.checks_run.append("database")
    receipt = registry.database.ping()
    if receipt.ok:
        return True
    report.add(
        Severity.ERROR,
        "database",
        f"start the database service (systemctl start {settings.database.service})",
        receipt.error or "database not reachable",
    )
    return False


def _check_packages(report: DiagnosticsReport, provisioner: PackageSetProvisioner) -> None:
    report.checks_run.append(provisioner.resource)
    missing = provisioner.missing_packages()
    if missing:
        report.add(
            Severity.ERROR,
            provisioner.resource,
            _HINTS[provisioner.resource],
            "not installed: " + ", ".join(missing),
        )


def _check_provisioner(report: DiagnosticsReport, provisioner: Provisioner) -> None:
    resource = provisioner.resource
    report.checks_run.append(resource)
    verification = provisioner.verify()
    if not verification.ok:
        report.add(Severity.ERROR, resource, _HINTS.get(resource, ""), "; ".join(verification.problems))
    for warning in verification.warnings:
        report.add(Severity.WARNING, resource, "review the value in the environment file", warning)

    if isinstance(provisioner, EnvFileProvisioner) and provisioner.path.is_file():
        missing = provisioner.missing_optional()
        if missing:
            report.add(
                Severity.WARNING,
                resource,
                f"set these keys in {provisioner.path} if the features are used",
                "optional keys unset: " + ", ".join(missing),
            )


def _check_port(report: DiagnosticsReport, settings: DeploySettings, registry: AdapterRegistry) -> None:
    unit = settings.service.unit_name
    if not registry.services.is_active(unit):
        return
    report.checks_run.append("port")
    port = settings.service.port
    if not registry.host.port_open("127.0.0.1", port):
        report.add(
            Severity.WARNING,
            "port",
            f"check the service logs: journalctl -u {unit}",
            f"{unit} is active but nothing answers on port {port}",
        )


def _check_disk(report: DiagnosticsReport, settings: DeploySettings, registry: AdapterRegistry) -> None:
    report.checks_run.append("disk")
    free = registry.host.free_disk_gb(str(settings.project_root))
    minimum = settings.disk.min_free_gb
    if free is not None and free < minimum:
        report.add(
            Severity.WARNING,
            "disk",
            "free disk space before the next install or build",
            f"{free:.1f} GB available ({minimum:.1f} GB recommended)",
        )


def _check_lock(report: DiagnosticsReport, settings: DeploySettings) -> None:
    report.checks_run.append("lock")
    holder = read_holder(settings.lock_path)
    if holder is None:
        return
    if holder_alive(holder):
        details = f"held by running process {holder.get('pid')} ({holder.get('command', '')})"
        hint = "wait for the running deployctl command to finish"
    else:
        details = f"left by process {holder.get('pid', 'unknown')} which is no longer running"
        hint = "remove it with 'deployctl unlock'"
    report.add(Severity.WARNING, "run-lock", hint, details)


def _check_journal(report: DiagnosticsReport, settings: DeploySettings, registry: AdapterRegistry) -> None:
    unit = settings.service.unit_name
    if not registry.services.is_active(unit):
        return
    report.checks_run.append("service-logs")
    logs = registry.services.recent_logs(unit, JOURNAL_SCAN_LINES)
    errors = [line.strip() for line in logs.splitlines() if _JOURNAL_ERROR.search(line)]
    if errors:
        report.add(
            Severity.WARNING,
            "service-logs",
            f"inspect the service logs: journalctl -u {unit} -n {JOURNAL_SCAN_LINES}",
            f"{len(errors)} error line(s) in recent logs, last: {errors[-1]}",
        )


def environment_summary(settings: DeploySettings) -> dict[str, str]:
    """Managed env keys as they are on disk; secret values are redacted."""
    current = parse_env_file(settings.env_path)
    summary = {}
    for key in settings.env.keys:
        value = current.get(key.name)
        if is_placeholder(value):
            summary[key.name] = "(unset)"
        else:
            summary[key.name] = redact(value) if key.secret else value
    return summary
