"""
Adapters — the host capabilities the orchestrator drives.

Real implementations shell out to apt, psql, pnpm and systemd; the
fakes in ``deployctl.adapters.mock`` simulate a host in memory. Every
adapter method returns a Receipt (or a plain answer for queries) and
never raises.
"""

from deployctl.adapters.base import (  # noqa: F401
    BuildRunner,
    Capability,
    DatabaseAdmin,
    Host,
    PackageInstaller,
    ServiceManager,
)
