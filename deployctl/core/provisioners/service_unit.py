"""
Service unit provisioner — the application's systemd unit.

The unit's PATH is written out explicitly: the directories of the
resolved required binaries followed by the base system directories.
If the unit dies right after start with exit status 127 (an
interpreter its ExecStart needs was not found), the unit is rendered
once more with the extra search directories appended and started
again. A second failure is terminal.
"""

from __future__ import annotations

import getpass
import logging
import os

from deployctl.core.errors import ErrorKind, ProvisionError
from deployctl.core.models.receipt import Receipt
from deployctl.core.models.service import ServiceDescriptor
from deployctl.core.provisioners.base import Provisioner, Verification, lookup_binary

logger = logging.getLogger(__name__)

EXIT_COMMAND_NOT_FOUND = 127
JOURNAL_TAIL_LINES = 20


class ServiceUnitProvisioner(Provisioner):
    resource = "service-unit"

    @property
    def unit(self) -> str:
        return self.settings.service.unit_name

    def _resolve(self, binary: str) -> str:
        search = self.settings.service.search_path()
        receipt = self.run_step(lambda: lookup_binary(self.registry, binary, search), step=f"which:{binary}")
        return receipt.output

    def build_descriptor(self, *, expanded: bool = False) -> ServiceDescriptor:
        """Render-ready unit for the current host."""
        service = self.settings.service
        start_path = self._resolve(service.start_binary)

        binary_dirs = [os.path.dirname(start_path)]
        for binary in self.settings.binaries:
            binary_dirs.append(os.path.dirname(self._resolve(binary)))

        search_path = binary_dirs + service.search_path(include_extra=False)
        if expanded:
            search_path += service.search_path()

        return ServiceDescriptor(
            name=self.unit,
            description=service.description,
            user=service.user or getpass.getuser(),
            working_directory=str(self.settings.project_root),
            exec_start=[start_path, *service.start_args],
            environment_file=str(self.settings.env_path),
            search_path=list(dict.fromkeys(p for p in search_path if p)),
            syslog_identifier=service.name.removesuffix(".service"),
            hardening=service.hardening,
        )

    # ── Provisioner contract ────────────────────────────────────

    def check_existing(self) -> bool:
        services = self.registry.services
        return (
            services.unit_exists(self.unit)
            and services.is_enabled(self.unit)
            and services.is_active(self.unit)
        )

    def create(self) -> None:
        descriptor = self.build_descriptor()
        if self._install_and_start(descriptor):
            return

        status = self.registry.services.last_exit_status(self.unit)
        if status == EXIT_COMMAND_NOT_FOUND:
            logger.warning(
                "%s exited with status 127 — retrying once with the extended search path", self.unit,
            )
            descriptor = self.build_descriptor(expanded=True)
            if self._install_and_start(descriptor, restart=True):
                return
            status = self.registry.services.last_exit_status(self.unit)

        logs = self.registry.services.recent_logs(self.unit, JOURNAL_TAIL_LINES)
        raise ProvisionError(
            f"{self.unit} is not running after start (last exit status: {status})",
            kind=ErrorKind.MISSING_DEPENDENCY if status == EXIT_COMMAND_NOT_FOUND else ErrorKind.UNCLASSIFIED,
            resource=self.resource,
            output=logs,
        )

    def _install_and_start(self, descriptor: ServiceDescriptor, *, restart: bool = False) -> bool:
        services = self.registry.services
        self.run_step(lambda: services.install_unit(descriptor), step="install")
        self.run_step(lambda: services.enable(self.unit), step="enable")
        if restart:
            self.run_step(lambda: services.stop(self.unit), step="stop")
        self.run_step(lambda: services.start(self.unit), step="start")

        settle = self.settings.service.settle_seconds
        if settle > 0:
            self.ctx.sleep(settle)
        active = services.is_active(self.unit)
        if active:
            logger.info("%s is active (PATH=%s)", self.unit, descriptor.path_value)
        return active

    def verify(self) -> Verification:
        services = self.registry.services
        problems = []
        if not services.unit_exists(self.unit):
            problems.append(f"unit {self.unit} is not installed")
        else:
            if not services.is_enabled(self.unit):
                problems.append(f"unit {self.unit} is not enabled")
            if not services.is_active(self.unit):
                problems.append(f"unit {self.unit} is not active")
        return Verification.from_problems(problems)

    def teardown(self) -> Receipt:
        services = self.registry.services
        if not services.unit_exists(self.unit):
            return Receipt.skip(services.name, "remove-unit", reason=f"{self.unit} not installed")
        services.stop(self.unit)
        services.disable(self.unit)
        return services.remove_unit(self.unit)
