"""
DeploySettings — what to install, where, and how hard to retry.

Loaded from deploy.yml by ``deployctl.core.config.loader``. Every field
has a default so the orchestrator also runs without a config file; the
defaults describe the SnailyCAD v4 layout the installer was written for.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class RuntimeSpec(BaseModel):
    """How to (re)install the runtime that provides a required binary."""

    packages: list[str] = Field(default_factory=list)
    install_command: list[str] = Field(default_factory=list)


class DatabaseSettings(BaseModel):
    """PostgreSQL role and database owned by the application."""

    role: str = "snailycad"
    name: str = "snaily-cad-v4"
    password: str | None = None
    host: str = "localhost"
    port: int = 5432
    admin_user: str = "postgres"
    service: str = "postgresql"


class EnvKeySpec(BaseModel):
    """One key of the application's environment file."""

    name: str
    required: bool = False
    pattern: str | None = None
    default: str | None = None
    secret: bool = False
    description: str = ""
    from_database: str | None = None  # role, password, name, host, port

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid pattern {value!r}: {e}") from e
        return value

    @field_validator("from_database")
    @classmethod
    def _known_database_field(cls, value: str | None) -> str | None:
        if value is not None and value not in DatabaseSettings.model_fields:
            raise ValueError(f"unknown database field '{value}'")
        return value


DEFAULT_ENV_KEYS: list[EnvKeySpec] = [
    EnvKeySpec(name="POSTGRES_USER", required=True, from_database="role"),
    EnvKeySpec(name="POSTGRES_PASSWORD", required=True, from_database="password", secret=True),
    EnvKeySpec(name="POSTGRES_DB", required=True, from_database="name"),
    EnvKeySpec(name="DB_HOST", required=True, from_database="host"),
    EnvKeySpec(name="DB_PORT", required=True, from_database="port", pattern=r"^[0-9]{2,5}$"),
    EnvKeySpec(
        name="DISCORD_BOT_TOKEN",
        pattern=r"^[A-Za-z0-9._-]{50,}$",
        secret=True,
        description="Discord bot token",
    ),
    EnvKeySpec(
        name="DISCORD_SERVER_ID",
        pattern=r"^[0-9]{17,19}$",
        description="Discord snowflake ID (17-19 digits)",
    ),
    EnvKeySpec(
        name="DISCORD_CLIENT_ID",
        pattern=r"^[0-9]{17,19}$",
        description="Discord snowflake ID (17-19 digits)",
    ),
    EnvKeySpec(name="DISCORD_CLIENT_SECRET", secret=True),
    EnvKeySpec(
        name="STEAM_API_KEY",
        pattern=r"^[A-F0-9]{32}$",
        secret=True,
        description="32 hexadecimal characters",
    ),
]


class EnvFileSettings(BaseModel):
    """Environment file templating (paths relative to the project)."""

    path: str = ".env"
    template: str = ".env.example"
    keys: list[EnvKeySpec] = Field(default_factory=lambda: [k.model_copy() for k in DEFAULT_ENV_KEYS])
    values: dict[str, str] = Field(default_factory=dict)


class BuildSettings(BaseModel):
    """Application build through the build runner."""

    enabled: bool = True
    runner: str = "pnpm"
    frozen_lockfile: bool = True
    # Paths (relative to the project) whose presence means "already built"
    output_paths: list[str] = Field(default_factory=lambda: ["apps/client/.next", "apps/api/dist"])
    # Run before installing dependencies when the script exists; empty disables it
    env_copy_script: str = "scripts/copy-env.mjs"
    env_copy_args: list[str] = Field(default_factory=lambda: ["--client", "--api"])


class SourceSettings(BaseModel):
    """Optional git sync before building."""

    sync: bool = False
    repository: str | None = None
    remote: str = "origin"
    branch: str = "main"


DEFAULT_SEARCH_PATH = [
    "/usr/local/sbin",
    "/usr/local/bin",
    "/usr/sbin",
    "/usr/bin",
    "/sbin",
    "/bin",
]

DEFAULT_EXTRA_SEARCH_PATHS = [
    "/usr/local/lib/nodejs/bin",
    "~/.local/share/pnpm",
    "~/.local/bin",
]


class ServiceSettings(BaseModel):
    """The systemd unit that runs the application."""

    name: str = "start-snaily-cadv4"
    description: str = "SnailyCADv4 Service"
    user: str | None = None
    start_binary: str = "pnpm"
    start_args: list[str] = Field(default_factory=lambda: ["run", "start"])
    port: int = 3000
    base_search_path: list[str] = Field(default_factory=lambda: list(DEFAULT_SEARCH_PATH))
    extra_search_paths: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTRA_SEARCH_PATHS))
    settle_seconds: float = 3.0
    hardening: bool = True

    @property
    def unit_name(self) -> str:
        if self.name.endswith(".service"):
            return self.name
        return f"{self.name}.service"

    def search_path(self, *, include_extra: bool = True) -> list[str]:
        """Base system directories, optionally followed by the extra ones (expanded)."""
        entries = list(self.base_search_path)
        if include_extra:
            entries += self.extra_search_paths
        return _dedupe(os.path.expanduser(p) for p in entries)


def _dedupe(items) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        if item:
            seen.setdefault(item, None)
    return list(seen)


class RetrySettings(BaseModel):
    """Retrying executor policy (fixed backoff, not exponential)."""

    max_attempts: int = Field(3, ge=1)
    backoff_seconds: float = Field(2.0, ge=0)
    database_wait_seconds: float = Field(5.0, ge=0)


class DiskSettings(BaseModel):
    min_free_gb: float = 5.0


class BackupSettings(BaseModel):
    """Project archives under <project>/backups/."""

    before_install: bool = True
    keep: int = Field(5, ge=1)


class DeploySettings(BaseModel):
    """Root configuration — loaded from deploy.yml."""

    version: int = 1

    app_name: str = "snaily-cadv4"
    project_path: str = "/home/snaily-cadv4"
    state_dir: str = "~/.local/state/deployctl"

    packages: list[str] = Field(
        default_factory=lambda: [
            "git", "curl", "ca-certificates", "nodejs", "postgresql", "postgresql-contrib",
        ]
    )
    binaries: list[str] = Field(default_factory=lambda: ["git", "node", "pnpm", "psql"])
    runtimes: dict[str, RuntimeSpec] = Field(
        default_factory=lambda: {
            "git": RuntimeSpec(packages=["git"]),
            "node": RuntimeSpec(packages=["nodejs"]),
            "pnpm": RuntimeSpec(install_command=["npm", "install", "-g", "pnpm@latest"]),
            "psql": RuntimeSpec(packages=["postgresql", "postgresql-contrib"]),
        }
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    env: EnvFileSettings = Field(default_factory=EnvFileSettings)
    build: BuildSettings = Field(default_factory=BuildSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    disk: DiskSettings = Field(default_factory=DiskSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)

    # ── Resolved paths ──────────────────────────────────────────

    @property
    def project_root(self) -> Path:
        return Path(self.project_path).expanduser()

    @property
    def state_root(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def state_path(self) -> Path:
        return self.state_root / "install.json"

    @property
    def lock_path(self) -> Path:
        return self.state_root / "install.lock"

    @property
    def audit_path(self) -> Path:
        return self.state_root / "audit.ndjson"

    @property
    def env_path(self) -> Path:
        return self.project_root / self.env.path

    @property
    def env_template_path(self) -> Path:
        return self.project_root / self.env.template

    @property
    def backup_dir(self) -> Path:
        return self.project_root / "backups"
