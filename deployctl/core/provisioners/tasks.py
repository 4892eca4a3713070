"""
Phase tasks that are not resources: source sync and the build.
"""

from __future__ import annotations

import logging
from pathlib import Path

from deployctl.core.errors import ErrorKind, ProvisionError
from deployctl.core.provisioners.base import PhaseTask, ProvisionResult

logger = logging.getLogger(__name__)


class SourceSyncTask(PhaseTask):
    """Bring the checkout to ``<remote>/<branch>``.

    Local changes are stashed, not discarded. Clones the repository when
    the project directory does not exist yet and one is configured.
    """

    resource = "source"

    def _git(self, *args: str, cwd: Path | None = None):
        root = cwd or self.settings.project_root
        return self.run_step(
            lambda: self.registry.host.run(["git", *args], cwd=str(root)),
            step=f"git {args[0]}",
        )

    def _head(self) -> str:
        return self._git("rev-parse", "HEAD").output.strip()

    def ensure(self) -> ProvisionResult:
        source = self.settings.source
        if not source.sync:
            return ProvisionResult(self.resource, already_present=True, verified=True, skipped=True)

        root = self.settings.project_root
        if not (root / ".git").exists():
            if not source.repository:
                raise ProvisionError(
                    f"{root} is not a git checkout and source.repository is not set",
                    kind=ErrorKind.CONFIGURATION_INVALID,
                    resource=self.resource,
                )
            logger.info("Cloning %s into %s", source.repository, root)
            root.parent.mkdir(parents=True, exist_ok=True)
            self._git("clone", "--branch", source.branch, source.repository, str(root), cwd=root.parent)
            self.ctx.source_changed = True
            return ProvisionResult(self.resource, already_present=False, verified=True)

        before = self._head()
        self._git("stash")
        self._git("fetch", source.remote, source.branch)
        self._git("reset", "--hard", f"{source.remote}/{source.branch}")
        after = self._head()

        changed = before != after
        self.ctx.source_changed = self.ctx.source_changed or changed
        if changed:
            logger.info("Source updated %s → %s", before[:8], after[:8])
        else:
            logger.info("Source already at %s/%s", source.remote, source.branch)
        return ProvisionResult(self.resource, already_present=not changed, verified=True)


class BuildTask(PhaseTask):
    """Install dependencies and build the application.

    Skipped when every configured build output already exists and the
    source did not change during this run.
    """

    resource = "build"

    def _outputs_present(self) -> bool:
        outputs = self.settings.build.output_paths
        if not outputs:
            return False
        root = self.settings.project_root
        return all((root / p).exists() for p in outputs)

    def ensure(self) -> ProvisionResult:
        build = self.settings.build
        if not build.enabled:
            return ProvisionResult(self.resource, already_present=True, verified=True, skipped=True)

        if self._outputs_present() and not self.ctx.source_changed:
            logger.info("Build outputs present — skipping build")
            return ProvisionResult(self.resource, already_present=True, verified=True)

        runner = self.registry.build
        warnings = self._copy_env_configs()
        self.run_step(lambda: runner.install_dependencies(frozen_lockfile=build.frozen_lockfile), step="install")
        self.run_step(runner.build, step="build")
        logger.info("Application built")
        return ProvisionResult(self.resource, already_present=False, verified=True, warnings=warnings)

    def _copy_env_configs(self) -> list[str]:
        """Distribute the root env file to the app packages before building."""
        build = self.settings.build
        if not build.env_copy_script:
            return []
        root = self.settings.project_root
        if not (root / build.env_copy_script).is_file():
            message = f"{build.env_copy_script} not found, environment configs not copied"
            logger.warning("%s", message)
            return [message]
        command = ["node", build.env_copy_script, *build.env_copy_args]
        self.run_step(lambda: self.registry.host.run(command, cwd=str(root)), step="copy-env")
        logger.info("Environment configs copied")
        return []
