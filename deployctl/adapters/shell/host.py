"""
Host adapter — binary lookup, ad-hoc commands and infrastructure probes.
"""

from __future__ import annotations

import logging
import os
import shutil
import socket

from deployctl.adapters.base import Host
from deployctl.adapters.shell.command import run_command
from deployctl.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class ShellHost(Host):
    """The local machine."""

    @property
    def name(self) -> str:
        return "host"

    def which(self, binary: str, search_path: list[str] | None = None) -> str | None:
        path = None
        if search_path:
            path = os.pathsep.join(os.path.expanduser(p) for p in search_path)
        return shutil.which(binary, path=path)

    def run(self, command: list[str], *, cwd: str | None = None, timeout: int = 600) -> Receipt:
        return run_command(self.name, "run", command, cwd=cwd, timeout=timeout)

    def port_open(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=2):
                return True
        except OSError:
            return False

    def free_disk_gb(self, path: str) -> float | None:
        # Walk up to the nearest existing directory (project may not exist yet)
        probe = os.path.expanduser(path)
        while probe and not os.path.exists(probe):
            parent = os.path.dirname(probe)
            if parent == probe:
                break
            probe = parent
        try:
            usage = shutil.disk_usage(probe or "/")
        except OSError as e:
            logger.debug("Disk usage probe failed for %s: %s", path, e)
            return None
        return usage.free / (1024 ** 3)
