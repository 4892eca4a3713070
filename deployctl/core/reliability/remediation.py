"""
Remediation registry — one corrective action per failure category.

The table is explicit and built once by ``default_remediations()``;
callers receive a read-only view. Every action checks before it acts:
applying it when the condition has already cleared is a no-op that
returns a skipped receipt.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from deployctl.core.models.receipt import Receipt
from deployctl.core.models.settings import DeploySettings
from deployctl.core.reliability.classify import Failure, FailureCategory

if TYPE_CHECKING:
    from deployctl.adapters.registry import AdapterRegistry

logger = logging.getLogger(__name__)


@dataclass
class RemediationContext:
    """What a remediation may touch."""

    registry: AdapterRegistry
    settings: DeploySettings
    sleep: Callable[[float], None] = field(default=time.sleep)


class RemediationAction(ABC):
    """A corrective action for one failure category."""

    name: str = "remediation"

    @abstractmethod
    def apply(self, failure: Failure, ctx: RemediationContext) -> Receipt:
        """Correct the condition behind ``failure`` (no-op if already cleared)."""

    def _skip(self, reason: str) -> Receipt:
        return Receipt.skip("remediation", self.name, reason=reason)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class ClearPackageLock(RemediationAction):
    """Release a stale package manager lock.

    A lock held by a live process is left alone; the executor's backoff
    is the wait. Only leftovers with no live holder are removed.
    """

    name = "clear-package-lock"

    def apply(self, failure: Failure, ctx: RemediationContext) -> Receipt:
        packages = ctx.registry.packages
        if packages.is_locked():
            logger.info("Package lock held by a live process — waiting")
            return self._skip("lock held by a live process")
        logger.warning("Package lock has no live holder — releasing it")
        return packages.force_release_lock()


class InstallPackage(RemediationAction):
    """Refresh the package index, then install the named package."""

    name = "install-package"

    def apply(self, failure: Failure, ctx: RemediationContext) -> Receipt:
        packages = ctx.registry.packages
        refreshed = packages.refresh_index()
        if refreshed.failed:
            logger.warning("Package index refresh failed: %s", refreshed.error)
            return refreshed
        package = failure.subject
        if not package or packages.is_installed(package):
            return refreshed
        logger.info("Installing missing package: %s", package)
        return packages.install_or_upgrade([package])


class ReinstallRuntime(RemediationAction):
    """Install the runtime that provides a missing binary."""

    name = "reinstall-runtime"

    def apply(self, failure: Failure, ctx: RemediationContext) -> Receipt:
        binary = failure.subject
        if not binary:
            return self._skip("missing binary could not be identified")

        search_path = ctx.settings.service.search_path()
        if ctx.registry.host.which(binary, search_path):
            return self._skip(f"{binary} already resolves")

        runtime = ctx.settings.runtimes.get(binary)
        if runtime is None:
            return Receipt.failure(
                "remediation", self.name, error=f"No runtime configured that provides '{binary}'",
            )

        logger.info("Reinstalling runtime for %s", binary)
        receipt = self._skip("runtime has nothing to install")
        if runtime.packages:
            receipt = ctx.registry.packages.install_or_upgrade(list(runtime.packages))
            if receipt.failed:
                return receipt
        if runtime.install_command:
            receipt = ctx.registry.host.run(list(runtime.install_command))
        return receipt


class WaitAndRetry(RemediationAction):
    """Start the database service if it is down, then give it time."""

    name = "wait-for-database"

    def apply(self, failure: Failure, ctx: RemediationContext) -> Receipt:
        services = ctx.registry.services
        unit = ctx.settings.database.service
        receipt = self._skip(f"{unit} already active")
        if not services.is_active(unit):
            logger.info("Database service %s is not active — starting it", unit)
            receipt = services.start(unit)
        wait = ctx.settings.retry.database_wait_seconds
        if wait > 0:
            ctx.sleep(wait)
        return receipt


def default_remediations() -> Mapping[FailureCategory, RemediationAction]:
    """The category → action table, read-only."""
    return MappingProxyType({
        FailureCategory.LOCK_HELD: ClearPackageLock(),
        FailureCategory.PACKAGE_MISSING: InstallPackage(),
        FailureCategory.BINARY_MISSING: ReinstallRuntime(),
        FailureCategory.DATABASE_UNREACHABLE: WaitAndRetry(),
    })
