"""
Adapter registry — the bundle of capabilities the engine talks to.

The engine never constructs adapters itself. ``build_registry`` wires
the real set from settings; ``mock_mode=True`` swaps in the in-memory
fakes so the whole control loop can run without touching the host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from deployctl.adapters.base import BuildRunner, DatabaseAdmin, Host, PackageInstaller, ServiceManager
from deployctl.core.models.settings import DeploySettings

logger = logging.getLogger(__name__)


@dataclass
class AdapterRegistry:
    """One adapter per capability."""

    packages: PackageInstaller
    database: DatabaseAdmin
    build: BuildRunner
    services: ServiceManager
    host: Host
    mock_mode: bool = False

    def adapters(self) -> dict[str, Any]:
        return {
            "packages": self.packages,
            "database": self.database,
            "build": self.build,
            "services": self.services,
            "host": self.host,
        }

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Name and implementing type of each capability."""
        return {
            capability: {
                "name": adapter.name,
                "type": adapter.__class__.__name__,
                "mock": self.mock_mode,
            }
            for capability, adapter in self.adapters().items()
        }


def build_registry(settings: DeploySettings, *, mock_mode: bool = False) -> AdapterRegistry:
    """Create the adapter set for ``settings``.

    Imports are local so the fakes never pull in the real adapters and
    vice versa.
    """
    if mock_mode:
        from deployctl.adapters.mock import build_fake_registry

        logger.info("Adapter registry in mock mode — no host changes will be made")
        return build_fake_registry(settings)

    from deployctl.adapters.build.pnpm import PnpmBuildRunner
    from deployctl.adapters.database.postgres import PostgresAdmin
    from deployctl.adapters.packages.apt import AptPackageInstaller
    from deployctl.adapters.services.systemd import SystemdServiceManager
    from deployctl.adapters.shell.host import ShellHost

    return AdapterRegistry(
        packages=AptPackageInstaller(),
        database=PostgresAdmin(admin_user=settings.database.admin_user),
        build=PnpmBuildRunner(
            str(settings.project_root),
            binary=settings.build.runner,
            search_path=settings.service.search_path(),
        ),
        services=SystemdServiceManager(),
        host=ShellHost(),
    )
