"""
Environment file provisioner — ``<project>/.env``.

Value precedence for each key, first non-placeholder wins:

    existing file  >  env.values in deploy.yml  >  DEPLOYCTL_ENV_<KEY>
    >  database settings  >  key default

A value that violates its key's pattern is written anyway and reported
as a warning. The previous file is copied to ``.env.bak.<timestamp>``
before it is rewritten; it is never deleted.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
import tempfile
from datetime import datetime
from pathlib import Path

from deployctl.core.models.receipt import Receipt
from deployctl.core.models.settings import EnvKeySpec
from deployctl.core.provisioners.base import ProvisionContext, Provisioner, Verification
from deployctl.core.services.credentials import ResolvedPassword
from deployctl.core.services.env_file import is_placeholder, parse_env_file, render_env

logger = logging.getLogger(__name__)

ENV_FILE_MODE = 0o600
ENV_OVERRIDE_PREFIX = "DEPLOYCTL_ENV_"


class EnvFileProvisioner(Provisioner):
    resource = "env-file"

    def __init__(self, ctx: ProvisionContext, password: ResolvedPassword | None = None):
        super().__init__(ctx)
        self._password = password

    @property
    def path(self) -> Path:
        return self.settings.env_path

    # ── Values ──────────────────────────────────────────────────

    def _database_value(self, key: EnvKeySpec) -> str | None:
        if key.from_database is None:
            return None
        if key.from_database == "password":
            return self._password.value if self._password else self.settings.database.password
        value = getattr(self.settings.database, key.from_database)
        return None if value is None else str(value)

    def desired_values(self) -> dict[str, str]:
        """The value each managed key should have."""
        existing = parse_env_file(self.path)
        configured = self.settings.env.values
        values: dict[str, str] = {}

        for key in self.settings.env.keys:
            candidates = (
                existing.get(key.name),
                configured.get(key.name),
                os.environ.get(f"{ENV_OVERRIDE_PREFIX}{key.name}"),
                self._database_value(key),
                key.default,
            )
            chosen = next((c for c in candidates if not is_placeholder(c)), None)
            values[key.name] = chosen if chosen is not None else existing.get(key.name, "")

        for name, value in configured.items():
            if name not in values:
                kept = existing.get(name)
                values[name] = value if is_placeholder(kept) else kept
        return values

    # ── Provisioner contract ────────────────────────────────────

    def check_existing(self) -> bool:
        if not self.path.is_file():
            return False
        current = parse_env_file(self.path)
        return all(current.get(k) == v for k, v in self.desired_values().items())

    def create(self) -> None:
        values = self.desired_values()

        if self.path.is_file():
            template = self.path.read_text(encoding="utf-8")
            self.backup()
        elif self.settings.env_template_path.is_file():
            logger.info("Templating %s from %s", self.path, self.settings.env_template_path)
            template = self.settings.env_template_path.read_text(encoding="utf-8")
        else:
            template = None

        content = render_env(values, template=template, app_name=self.settings.app_name)
        _write_private(self.path, content)
        logger.info("Environment file written: %s", self.path)

    def verify(self) -> Verification:
        if not self.path.is_file():
            return Verification.from_problems([f"{self.path} does not exist"])

        current = parse_env_file(self.path)
        problems = [
            f"required key {k.name} is missing or unset"
            for k in self.settings.env.keys
            if k.required and is_placeholder(current.get(k.name))
        ]

        warnings = self.format_warnings(current)
        mode = stat.S_IMODE(self.path.stat().st_mode)
        if mode & 0o077:
            warnings.append(f"{self.path} is readable by other users (mode {mode:o}, expected 600)")
        return Verification.from_problems(problems, warnings)

    def teardown(self) -> Receipt:
        """Back up only: the env file holds operator secrets."""
        backup = self.backup()
        if backup is None:
            return Receipt.skip("provisioner", "teardown:env-file", reason="no env file")
        return Receipt.success(
            "provisioner", "teardown:env-file", output=f"kept {self.path}, backup at {backup}",
        )

    # ── Helpers ─────────────────────────────────────────────────

    def format_warnings(self, current: dict[str, str] | None = None) -> list[str]:
        """Values present but not matching their key's pattern."""
        current = parse_env_file(self.path) if current is None else current
        warnings = []
        for key in self.settings.env.keys:
            value = current.get(key.name)
            if key.pattern and value and not _matches(key.pattern, value):
                hint = f" ({key.description})" if key.description else ""
                warnings.append(f"{key.name} has an unexpected format{hint}")
        return warnings

    def missing_optional(self, current: dict[str, str] | None = None) -> list[str]:
        current = parse_env_file(self.path) if current is None else current
        return [
            k.name for k in self.settings.env.keys
            if not k.required and is_placeholder(current.get(k.name))
        ]

    def backup(self) -> Path | None:
        """Copy the env file to ``.env.bak.YYYYMMDD_HHMMSS``.

        A backup taken within the same second gets a ``-N`` suffix;
        existing backups are never overwritten.
        """
        if not self.path.is_file():
            return None
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        base = f"{self.path.name}.bak.{stamp}"
        dest = self.path.with_name(base)
        counter = 1
        while dest.exists():
            dest = self.path.with_name(f"{base}-{counter}")
            counter += 1
        shutil.copy2(self.path, dest)
        os.chmod(dest, ENV_FILE_MODE)
        logger.info("Backed up %s → %s", self.path, dest)
        return dest


def _matches(pattern: str, value: str) -> bool:
    return re.search(pattern, value) is not None


def _write_private(path: Path, content: str) -> None:
    """Atomic write with mode 0600 from the first byte."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".env_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        os.fchmod(fd, ENV_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
    os.chmod(path, ENV_FILE_MODE)
