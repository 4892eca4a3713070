"""
Mock adapters — in-memory test doubles for every capability.

Used in mock mode and by the test suite to simulate a host without
touching apt, PostgreSQL or systemd. Each fake keeps a ``call_log`` of
``(operation, args)`` tuples and can be told to fail a given operation
with ``set_failure``.

The fakes share nothing by default. Wire a FakePackageInstaller to a
FakeHost (``host=``) and installing a package makes the binaries it
provides resolvable, which is what the install scenarios rely on.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from deployctl.adapters.base import BuildRunner, DatabaseAdmin, Host, PackageInstaller, ServiceManager
from deployctl.core.models.receipt import Receipt
from deployctl.core.models.service import ServiceDescriptor

APT_LOCK_MESSAGE = (
    "E: Could not get lock /var/lib/dpkg/lock-frontend. "
    "It is held by process 4242 (apt-get)\n"
    "E: Unable to acquire the dpkg frontend lock (/var/lib/dpkg/lock-frontend), "
    "is another process using it?"
)

DB_UNREACHABLE_MESSAGE = (
    'psql: error: connection to server on socket "/var/run/postgresql/.s.PGSQL.5432" '
    "failed: No such file or directory\n\tIs the server running locally and accepting "
    "connections on that socket?"
)


class _FakeBase:
    """call_log and scripted failures shared by all fakes."""

    adapter_name = "fake"

    def __init__(self) -> None:
        self.call_log: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[str, Receipt] = {}

    @property
    def name(self) -> str:
        return self.adapter_name

    def calls(self, operation: str) -> list[tuple[Any, ...]]:
        """Arguments of every recorded call to ``operation``."""
        return [args for op, args in self.call_log if op == operation]

    def set_failure(self, operation: str, error: str = "Mock failure", exit_code: int = 1) -> None:
        """Make every following call to ``operation`` fail."""
        self._failures[operation] = Receipt.failure(
            adapter=self.adapter_name, operation=operation, error=error, exit_code=exit_code,
        )

    def clear_failure(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def reset(self) -> None:
        """Clear call log and scripted failures."""
        self.call_log.clear()
        self._failures.clear()

    def _record(self, operation: str, *args: Any) -> Receipt | None:
        self.call_log.append((operation, args))
        scripted = self._failures.get(operation)
        if scripted is not None:
            return scripted.model_copy(deep=True)
        return None

    def _ok(self, operation: str, output: str = "") -> Receipt:
        return Receipt.success(self.adapter_name, operation, output=output, exit_code=0)


# ═════════════════════════════════════════════════════════════════
# Host
# ═════════════════════════════════════════════════════════════════


class FakeHost(_FakeBase, Host):
    """A host with a configurable set of resolvable binaries.

    ``binaries`` maps a binary name to its absolute path. A lookup with a
    search path only succeeds when the binary's directory is on it.
    ``command_provides`` maps a command line (space-joined) to binaries
    it installs, e.g. ``{"npm install -g pnpm@latest": {"pnpm": "/usr/bin/pnpm"}}``.
    """

    adapter_name = "host"

    def __init__(
        self,
        binaries: dict[str, str] | None = None,
        command_provides: dict[str, dict[str, str]] | None = None,
        open_ports: set[int] | None = None,
        free_gb: float | None = 100.0,
    ):
        super().__init__()
        self.binaries: dict[str, str] = dict(binaries or {})
        self.command_provides = dict(command_provides or {})
        self.open_ports: set[int] = set(open_ports or ())
        self.free_gb = free_gb

    def add_binary(self, binary: str, path: str | None = None) -> None:
        self.binaries[binary] = path or f"/usr/bin/{binary}"

    def remove_binary(self, binary: str) -> None:
        self.binaries.pop(binary, None)

    def which(self, binary: str, search_path: list[str] | None = None) -> str | None:
        path = self.binaries.get(binary)
        if path is None or search_path is None:
            return path
        allowed = {os.path.expanduser(p).rstrip("/") for p in search_path}
        return path if os.path.dirname(path) in allowed else None

    def run(self, command: list[str], *, cwd: str | None = None, timeout: int = 600) -> Receipt:
        failed = self._record("run", tuple(command), cwd)
        if failed is not None:
            return failed
        key = " ".join(command)
        for binary, path in self.command_provides.get(key, {}).items():
            self.binaries[binary] = path
        return self._ok("run", output=f"[mock] {key}")

    def port_open(self, host: str, port: int) -> bool:
        self.call_log.append(("port_open", (host, port)))
        return port in self.open_ports

    def free_disk_gb(self, path: str) -> float | None:
        self.call_log.append(("free_disk_gb", (path,)))
        return self.free_gb


# ═════════════════════════════════════════════════════════════════
# Package installer
# ═════════════════════════════════════════════════════════════════


class FakePackageInstaller(_FakeBase, PackageInstaller):
    """apt stand-in.

    ``lock_held=True`` simulates another process holding the dpkg lock
    for the whole run: every install fails with the apt lock message and
    ``is_locked()`` stays True. ``stale_lock=True`` simulates leftover
    lock files with no live holder: installs fail until
    ``force_release_lock()`` is called. Packages in ``unavailable`` fail
    with "Unable to locate package" until ``refresh_index()`` runs.
    """

    adapter_name = "apt"

    def __init__(
        self,
        installed: set[str] | None = None,
        *,
        host: FakeHost | None = None,
        provides: dict[str, dict[str, str]] | None = None,
        lock_held: bool = False,
        stale_lock: bool = False,
        unavailable: set[str] | None = None,
    ):
        super().__init__()
        self.installed: set[str] = set(installed or ())
        self.host = host
        self.provides = dict(provides or {})
        self.lock_held = lock_held
        self.stale_lock = stale_lock
        self.unavailable: set[str] = set(unavailable or ())

    def install_or_upgrade(self, names: list[str]) -> Receipt:
        failed = self._record("install_or_upgrade", tuple(names))
        if failed is not None:
            return failed
        if self.lock_held or self.stale_lock:
            return Receipt.failure(self.adapter_name, "install", error=APT_LOCK_MESSAGE, exit_code=100)
        missing = [n for n in names if n in self.unavailable]
        if missing:
            return Receipt.failure(
                self.adapter_name,
                "install",
                error=f"E: Unable to locate package {missing[0]}",
                exit_code=100,
            )
        for package in names:
            self.installed.add(package)
            if self.host is not None:
                for binary, path in self.provides.get(package, {}).items():
                    self.host.binaries[binary] = path
        return self._ok("install", output=f"[mock] installed {' '.join(names)}")

    def is_installed(self, name: str) -> bool:
        return name in self.installed

    def is_locked(self) -> bool:
        self.call_log.append(("is_locked", ()))
        return self.lock_held

    def force_release_lock(self) -> Receipt:
        failed = self._record("force_release_lock")
        if failed is not None:
            return failed
        self.stale_lock = False
        return self._ok("release-lock")

    def refresh_index(self) -> Receipt:
        failed = self._record("refresh_index")
        if failed is not None:
            return failed
        self.unavailable.clear()
        return self._ok("update")


# ═════════════════════════════════════════════════════════════════
# Database
# ═════════════════════════════════════════════════════════════════


class FakeDatabaseAdmin(_FakeBase, DatabaseAdmin):
    """PostgreSQL stand-in with in-memory roles and databases.

    ``unreachable_pings`` makes the first N pings fail with the
    connection-refused message, for database_unreachable retries.
    """

    adapter_name = "postgres"

    def __init__(self, *, reachable: bool = True, unreachable_pings: int = 0):
        super().__init__()
        self.roles: dict[str, dict[str, Any]] = {}
        self.databases: dict[str, str] = {}
        self.grants: set[tuple[str, str]] = set()
        self.reachable = reachable
        self.unreachable_pings = unreachable_pings

    def ping(self) -> Receipt:
        failed = self._record("ping")
        if failed is not None:
            return failed
        if not self.reachable or self.unreachable_pings > 0:
            self.unreachable_pings = max(0, self.unreachable_pings - 1)
            return Receipt.failure(self.adapter_name, "ping", error=DB_UNREACHABLE_MESSAGE, exit_code=2)
        return self._ok("ping", output="1")

    def role_exists(self, role: str) -> bool:
        return self.reachable and role in self.roles

    def create_role(self, role: str, password: str) -> Receipt:
        failed = self._record("create_role", role)
        if failed is not None:
            return failed
        if role in self.roles:
            return Receipt.failure(
                self.adapter_name, "create-role",
                error=f'ERROR:  role "{role}" already exists', exit_code=3,
            )
        self.roles[role] = {"password": password, "login": True}
        return self._ok("create-role")

    def role_can_login(self, role: str) -> bool:
        return self.reachable and bool(self.roles.get(role, {}).get("login"))

    def database_exists(self, name: str) -> bool:
        return self.reachable and name in self.databases

    def create_database(self, name: str, owner: str) -> Receipt:
        failed = self._record("create_database", name, owner)
        if failed is not None:
            return failed
        if name in self.databases:
            return Receipt.failure(
                self.adapter_name, "create-database",
                error=f'ERROR:  database "{name}" already exists', exit_code=3,
            )
        self.databases[name] = owner
        return self._ok("create-database")

    def database_owner(self, name: str) -> str | None:
        if not self.reachable:
            return None
        return self.databases.get(name)

    def set_owner(self, database: str, owner: str) -> Receipt:
        failed = self._record("set_owner", database, owner)
        if failed is not None:
            return failed
        if database not in self.databases:
            return Receipt.failure(
                self.adapter_name, "set-owner",
                error=f'ERROR:  database "{database}" does not exist', exit_code=1,
            )
        self.databases[database] = owner
        return self._ok("set-owner")

    def grant_all(self, database: str, role: str) -> Receipt:
        failed = self._record("grant_all", database, role)
        if failed is not None:
            return failed
        self.grants.add((database, role))
        return self._ok("grant")

    def drop_database(self, name: str) -> Receipt:
        failed = self._record("drop_database", name)
        if failed is not None:
            return failed
        self.databases.pop(name, None)
        return self._ok("drop-database")

    def drop_role(self, role: str) -> Receipt:
        failed = self._record("drop_role", role)
        if failed is not None:
            return failed
        self.roles.pop(role, None)
        return self._ok("drop-role")


# ═════════════════════════════════════════════════════════════════
# Build runner
# ═════════════════════════════════════════════════════════════════


class FakeBuildRunner(_FakeBase, BuildRunner):
    """Build stand-in; ``outputs`` are directories a build creates."""

    adapter_name = "pnpm"

    def __init__(self, outputs: list[Path] | None = None):
        super().__init__()
        self.outputs = list(outputs or [])

    def install_dependencies(self, *, frozen_lockfile: bool = True) -> Receipt:
        failed = self._record("install_dependencies", frozen_lockfile)
        if failed is not None:
            return failed
        return self._ok("install")

    def build(self) -> Receipt:
        failed = self._record("build")
        if failed is not None:
            return failed
        for output in self.outputs:
            output.mkdir(parents=True, exist_ok=True)
        return self._ok("build")


# ═════════════════════════════════════════════════════════════════
# Service manager
# ═════════════════════════════════════════════════════════════════


class FakeServiceManager(_FakeBase, ServiceManager):
    """systemd stand-in.

    ``required_path_entry``: a unit whose ``Environment=PATH`` lacks this
    directory starts but dies immediately with exit status 127, the way
    a unit does when its ExecStart cannot find an interpreter.
    """

    adapter_name = "systemd"

    def __init__(
        self,
        *,
        active: set[str] | None = None,
        required_path_entry: str | None = None,
    ):
        super().__init__()
        self.units: dict[str, ServiceDescriptor] = {}
        self.enabled: set[str] = set()
        self.active: set[str] = set(active or ())
        self.exit_status: dict[str, int] = {}
        self.required_path_entry = required_path_entry
        self.logs: dict[str, str] = {}

    def install_unit(self, descriptor: ServiceDescriptor) -> Receipt:
        failed = self._record("install_unit", descriptor.name)
        if failed is not None:
            return failed
        self.units[descriptor.name] = descriptor
        return self._ok("install-unit")

    def unit_exists(self, unit: str) -> bool:
        return unit in self.units

    def enable(self, unit: str) -> Receipt:
        failed = self._record("enable", unit)
        if failed is not None:
            return failed
        if unit not in self.units:
            return Receipt.failure(
                self.adapter_name, "enable",
                error=f"Failed to enable unit: Unit file {unit} does not exist.", exit_code=1,
            )
        self.enabled.add(unit)
        return self._ok("enable")

    def start(self, unit: str) -> Receipt:
        failed = self._record("start", unit)
        if failed is not None:
            return failed
        descriptor = self.units.get(unit)
        if descriptor is None:
            # Non-application units (e.g. postgresql) just start
            self.active.add(unit)
            return self._ok("start")
        required = self.required_path_entry
        if required and os.path.expanduser(required) not in descriptor.search_path:
            self.active.discard(unit)
            self.exit_status[unit] = 127
            self.logs[unit] = f"{unit}: /usr/bin/env: 'node': No such file or directory"
            return self._ok("start")
        self.active.add(unit)
        self.exit_status[unit] = 0
        return self._ok("start")

    def stop(self, unit: str) -> Receipt:
        failed = self._record("stop", unit)
        if failed is not None:
            return failed
        self.active.discard(unit)
        return self._ok("stop")

    def disable(self, unit: str) -> Receipt:
        failed = self._record("disable", unit)
        if failed is not None:
            return failed
        self.enabled.discard(unit)
        return self._ok("disable")

    def remove_unit(self, unit: str) -> Receipt:
        failed = self._record("remove_unit", unit)
        if failed is not None:
            return failed
        self.units.pop(unit, None)
        self.enabled.discard(unit)
        self.active.discard(unit)
        return self._ok("remove-unit")

    def is_active(self, unit: str) -> bool:
        return unit in self.active

    def is_enabled(self, unit: str) -> bool:
        return unit in self.enabled

    def last_exit_status(self, unit: str) -> int | None:
        return self.exit_status.get(unit)

    def recent_logs(self, unit: str, lines: int = 20) -> str:
        return self.logs.get(unit, "")


# ═════════════════════════════════════════════════════════════════
# Wiring
# ═════════════════════════════════════════════════════════════════


def build_fake_registry(settings, **overrides: Any):
    """A fresh simulated host for ``settings``.

    Nothing is installed yet. Installing a runtime package, or running a
    runtime's install command, makes its binary resolvable under
    ``/usr/bin``. Keyword overrides replace individual fakes.
    """
    from deployctl.adapters.registry import AdapterRegistry

    provides: dict[str, dict[str, str]] = {}
    command_provides: dict[str, dict[str, str]] = {}
    for binary, runtime in settings.runtimes.items():
        path = f"/usr/bin/{binary}"
        if runtime.packages:
            provides.setdefault(runtime.packages[0], {})[binary] = path
        if runtime.install_command:
            command_provides.setdefault(" ".join(runtime.install_command), {})[binary] = path

    host = overrides.pop("host", None) or FakeHost(command_provides=command_provides)
    packages = overrides.pop("packages", None) or FakePackageInstaller(host=host, provides=provides)
    return AdapterRegistry(
        packages=packages,
        database=overrides.pop("database", None) or FakeDatabaseAdmin(),
        build=overrides.pop("build", None) or FakeBuildRunner(),
        services=overrides.pop("services", None) or FakeServiceManager(),
        host=host,
        mock_mode=True,
    )
