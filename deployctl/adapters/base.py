"""
Adapter base — the capability contracts between engine and tools.

The orchestrator reaches the outside world only through these five
capabilities. Real implementations live next to this module
(apt, psql, pnpm, systemd, the host shell); in-memory fakes live in
``deployctl.adapters.mock``.

Mutating calls return a Receipt and NEVER raise: a failed tool run is
captured with its exit code and output so the failure classifier can
look at it. Queries (``is_installed``, ``role_exists`` ...) answer a
plain bool and answer False when the tool cannot be reached.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from deployctl.core.models.receipt import Receipt
from deployctl.core.models.service import ServiceDescriptor


class Capability(ABC):
    """Common surface of every adapter."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g. 'apt', 'psql', 'systemd')."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class PackageInstaller(Capability):
    """System package manager."""

    @abstractmethod
    def install_or_upgrade(self, names: list[str]) -> Receipt:
        """Install the packages, upgrading any already present."""

    @abstractmethod
    def is_installed(self, name: str) -> bool: ...

    @abstractmethod
    def is_locked(self) -> bool:
        """Whether a live process currently holds the package lock."""

    @abstractmethod
    def force_release_lock(self) -> Receipt:
        """Remove stale lock files and finish an interrupted configure."""

    @abstractmethod
    def refresh_index(self) -> Receipt: ...


class DatabaseAdmin(Capability):
    """Administrative access to the database server."""

    @abstractmethod
    def ping(self) -> Receipt:
        """Succeeds when the server accepts connections."""

    @abstractmethod
    def role_exists(self, role: str) -> bool: ...

    @abstractmethod
    def create_role(self, role: str, password: str) -> Receipt: ...

    @abstractmethod
    def role_can_login(self, role: str) -> bool: ...

    @abstractmethod
    def database_exists(self, name: str) -> bool: ...

    @abstractmethod
    def create_database(self, name: str, owner: str) -> Receipt: ...

    @abstractmethod
    def database_owner(self, name: str) -> str | None: ...

    @abstractmethod
    def set_owner(self, database: str, owner: str) -> Receipt: ...

    @abstractmethod
    def grant_all(self, database: str, role: str) -> Receipt: ...

    @abstractmethod
    def drop_database(self, name: str) -> Receipt: ...

    @abstractmethod
    def drop_role(self, role: str) -> Receipt: ...


class BuildRunner(Capability):
    """Dependency install and build of the application."""

    @abstractmethod
    def install_dependencies(self, *, frozen_lockfile: bool = True) -> Receipt: ...

    @abstractmethod
    def build(self) -> Receipt: ...


class ServiceManager(Capability):
    """Init system managing long-running services."""

    @abstractmethod
    def install_unit(self, descriptor: ServiceDescriptor) -> Receipt:
        """Write the unit file and reload the manager."""

    @abstractmethod
    def unit_exists(self, unit: str) -> bool: ...

    @abstractmethod
    def enable(self, unit: str) -> Receipt: ...

    @abstractmethod
    def start(self, unit: str) -> Receipt: ...

    @abstractmethod
    def stop(self, unit: str) -> Receipt: ...

    @abstractmethod
    def disable(self, unit: str) -> Receipt: ...

    @abstractmethod
    def remove_unit(self, unit: str) -> Receipt: ...

    @abstractmethod
    def is_active(self, unit: str) -> bool: ...

    @abstractmethod
    def is_enabled(self, unit: str) -> bool: ...

    @abstractmethod
    def last_exit_status(self, unit: str) -> int | None:
        """Exit status of the unit's main process on its last run."""

    @abstractmethod
    def recent_logs(self, unit: str, lines: int = 20) -> str: ...


class Host(Capability):
    """The machine itself: binary lookup, ad-hoc commands, probes."""

    @abstractmethod
    def which(self, binary: str, search_path: list[str] | None = None) -> str | None:
        """Absolute path of ``binary`` (searching ``search_path`` if given)."""

    @abstractmethod
    def run(self, command: list[str], *, cwd: str | None = None, timeout: int = 600) -> Receipt: ...

    @abstractmethod
    def port_open(self, host: str, port: int) -> bool: ...

    @abstractmethod
    def free_disk_gb(self, path: str) -> float | None: ...
