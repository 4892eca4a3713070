"""
System packages and the binaries the application needs.
"""

from __future__ import annotations

import logging

from deployctl.core.provisioners.base import Provisioner, Verification, lookup_binary

logger = logging.getLogger(__name__)


class PackageSetProvisioner(Provisioner):
    """Required packages installed, required binaries resolvable.

    A binary that still does not resolve after the packages are in is
    looked up through the executor: the lookup fails like a shell's
    "command not found", which classifies as binary_missing and gets its
    runtime reinstalled before the next attempt.
    """

    resource = "packages"

    def _search_path(self) -> list[str]:
        return self.settings.service.search_path()

    def missing_packages(self) -> list[str]:
        packages = self.registry.packages
        return [p for p in self.settings.packages if not packages.is_installed(p)]

    def _missing_binaries(self) -> list[str]:
        host = self.registry.host
        search = self._search_path()
        return [b for b in self.settings.binaries if host.which(b, search) is None]

    def check_existing(self) -> bool:
        return not self.missing_packages() and not self._missing_binaries()

    def create(self) -> None:
        missing = self.missing_packages()
        if missing:
            logger.info("Installing packages: %s", ", ".join(missing))
            self.run_step(lambda: self.registry.packages.install_or_upgrade(missing), step="install")

        search = self._search_path()
        for binary in self.settings.binaries:
            receipt = self.run_step(
                lambda b=binary: lookup_binary(self.registry, b, search), step=f"which:{binary}",
            )
            logger.debug("%s resolved to %s", binary, receipt.output)

    def verify(self) -> Verification:
        problems = [f"package not installed: {p}" for p in self.missing_packages()]
        problems += [f"binary not found: {b}" for b in self._missing_binaries()]
        return Verification.from_problems(problems)
