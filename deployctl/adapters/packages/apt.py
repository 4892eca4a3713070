"""
apt package installer (Debian/Ubuntu).
"""

from __future__ import annotations

import logging

from deployctl.adapters.base import PackageInstaller
from deployctl.adapters.shell.command import privileged, run_command
from deployctl.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

APT_LOCK_FILES = (
    "/var/lib/dpkg/lock-frontend",
    "/var/lib/dpkg/lock",
    "/var/lib/apt/lists/lock",
    "/var/cache/apt/archives/lock",
)

_NONINTERACTIVE = ["env", "DEBIAN_FRONTEND=noninteractive"]


class AptPackageInstaller(PackageInstaller):
    """apt-get / dpkg through non-interactive sudo."""

    def __init__(self, timeout: int = 1800):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "apt"

    def install_or_upgrade(self, names: list[str]) -> Receipt:
        if not names:
            return Receipt.skip(self.name, "install", reason="nothing to install")
        cmd = privileged([*_NONINTERACTIVE, "apt-get", "install", "-y", *names])
        receipt = run_command(self.name, "install", cmd, timeout=self._timeout)
        receipt.metadata["packages"] = list(names)
        return receipt

    def is_installed(self, name: str) -> bool:
        receipt = run_command(
            self.name, "query", ["dpkg-query", "-W", "-f=${Status}", name], timeout=30,
        )
        return receipt.ok and "install ok installed" in receipt.output

    def is_locked(self) -> bool:
        # fuser exits 0 when a process has a lock file open and 1 with no
        # output when none has. Anything else (fuser missing, sudo refused,
        # timeout) is unknown and must not lead to a forced release.
        receipt = run_command(
            self.name, "lock-check", privileged(["fuser", *APT_LOCK_FILES]), timeout=30,
        )
        if receipt.ok:
            return True
        unlocked = (
            receipt.exit_code == 1
            and not receipt.output
            and not receipt.metadata.get("stderr")
        )
        if not unlocked:
            logger.warning(
                "Could not determine whether the package manager lock is held (exit %s): %s",
                receipt.exit_code,
                receipt.combined_output.strip() or "no output",
            )
        return not unlocked

    def force_release_lock(self) -> Receipt:
        logger.warning("Removing stale package manager locks")
        removed = run_command(
            self.name, "release-lock", privileged(["rm", "-f", *APT_LOCK_FILES]), timeout=30,
        )
        if removed.failed:
            return removed
        return run_command(
            self.name,
            "release-lock",
            privileged([*_NONINTERACTIVE, "dpkg", "--configure", "-a"]),
            timeout=self._timeout,
        )

    def refresh_index(self) -> Receipt:
        return run_command(
            self.name, "update", privileged(["apt-get", "update"]), timeout=self._timeout,
        )
