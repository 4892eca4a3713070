"""
systemd service manager.

Units are written to ``/etc/systemd/system`` through ``sudo tee`` (the
unit text is fed on stdin) followed by a ``daemon-reload``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from deployctl.adapters.base import ServiceManager
from deployctl.adapters.shell.command import privileged, run_command
from deployctl.core.models.receipt import Receipt
from deployctl.core.models.service import ServiceDescriptor

logger = logging.getLogger(__name__)

DEFAULT_UNIT_DIR = "/etc/systemd/system"


class SystemdServiceManager(ServiceManager):
    """systemctl / journalctl."""

    def __init__(self, unit_dir: str = DEFAULT_UNIT_DIR, timeout: int = 120):
        self._unit_dir = Path(unit_dir)
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "systemd"

    def _unit_path(self, unit: str) -> Path:
        return self._unit_dir / unit

    def _systemctl(self, operation: str, *args: str) -> Receipt:
        return run_command(
            self.name, operation, privileged(["systemctl", *args]), timeout=self._timeout,
        )

    def _query(self, *args: str) -> Receipt:
        # Read-only queries need no privileges
        return run_command(self.name, "query", ["systemctl", *args], timeout=30)

    # ── Unit files ──────────────────────────────────────────────

    def install_unit(self, descriptor: ServiceDescriptor) -> Receipt:
        path = self._unit_path(descriptor.name)
        written = run_command(
            self.name,
            "install-unit",
            privileged(["tee", str(path)]),
            input_text=descriptor.render(),
            timeout=30,
        )
        if written.failed:
            return written
        logger.info("Service unit written: %s", path)
        reload = self._systemctl("daemon-reload", "daemon-reload")
        reload.metadata["unit_path"] = str(path)
        return reload

    def unit_exists(self, unit: str) -> bool:
        return self._unit_path(unit).is_file()

    def remove_unit(self, unit: str) -> Receipt:
        path = self._unit_path(unit)
        removed = run_command(
            self.name, "remove-unit", privileged(["rm", "-f", str(path)]), timeout=30,
        )
        if removed.failed:
            return removed
        return self._systemctl("daemon-reload", "daemon-reload")

    # ── Lifecycle ───────────────────────────────────────────────

    def enable(self, unit: str) -> Receipt:
        return self._systemctl("enable", "enable", unit)

    def start(self, unit: str) -> Receipt:
        return self._systemctl("start", "start", unit)

    def stop(self, unit: str) -> Receipt:
        return self._systemctl("stop", "stop", unit)

    def disable(self, unit: str) -> Receipt:
        return self._systemctl("disable", "disable", unit)

    # ── Status ──────────────────────────────────────────────────

    def is_active(self, unit: str) -> bool:
        return self._query("is-active", "--quiet", unit).ok

    def is_enabled(self, unit: str) -> bool:
        return self._query("is-enabled", "--quiet", unit).ok

    def last_exit_status(self, unit: str) -> int | None:
        receipt = self._query("show", "-p", "ExecMainStatus", "--value", unit)
        if not receipt.ok:
            return None
        try:
            return int(receipt.output.strip())
        except ValueError:
            return None

    def recent_logs(self, unit: str, lines: int = 20) -> str:
        receipt = run_command(
            self.name,
            "logs",
            privileged(["journalctl", "-u", unit, "-n", str(lines), "--no-pager"]),
            timeout=30,
        )
        return receipt.output if receipt.ok else receipt.combined_output
