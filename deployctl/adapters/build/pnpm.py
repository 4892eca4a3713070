"""
pnpm build runner.

``install_dependencies`` tries a frozen-lockfile install first and falls
back to a regular install when the lockfile is out of date, the way the
deployment scripts always did.
"""

from __future__ import annotations

import logging
import os

from deployctl.adapters.base import BuildRunner
from deployctl.adapters.shell.command import run_command
from deployctl.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class PnpmBuildRunner(BuildRunner):
    """pnpm in the project directory."""

    def __init__(
        self,
        project_path: str,
        binary: str = "pnpm",
        search_path: list[str] | None = None,
        timeout: int = 1800,
    ):
        self._project_path = project_path
        self._binary = binary
        self._timeout = timeout
        # Freshly installed runtimes are not on this process's PATH yet
        self._env = None
        if search_path:
            current = os.environ.get("PATH", "")
            extra = os.pathsep.join(os.path.expanduser(p) for p in search_path)
            self._env = {"PATH": f"{extra}{os.pathsep}{current}" if current else extra}

    @property
    def name(self) -> str:
        return self._binary

    def _run(self, operation: str, args: list[str]) -> Receipt:
        return run_command(
            self.name,
            operation,
            [self._binary, *args],
            cwd=self._project_path,
            timeout=self._timeout,
            env_overrides=self._env,
        )

    def install_dependencies(self, *, frozen_lockfile: bool = True) -> Receipt:
        if frozen_lockfile:
            receipt = self._run("install", ["install", "--frozen-lockfile"])
            if receipt.ok or receipt.exit_code == 127:
                return receipt
            logger.warning("Frozen-lockfile install failed — retrying with a regular install")
        receipt = self._run("install", ["install"])
        receipt.metadata["frozen_lockfile"] = False
        return receipt

    def build(self) -> Receipt:
        return self._run("build", ["run", "build"])
