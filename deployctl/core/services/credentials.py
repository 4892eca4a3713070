"""
Database credential resolution.

The role password comes from, in order: configuration (or
DEPLOYCTL_DB_PASSWORD), the existing environment file, a freshly
generated secret. Resolving once per run keeps the role and the env
file in agreement.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from deployctl.core.models.settings import DeploySettings
from deployctl.core.services.env_file import is_placeholder, parse_env_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPassword:
    value: str
    source: str  # config, env_file, generated

    def __repr__(self) -> str:
        return f"ResolvedPassword(source={self.source!r})"


def generate_password(length: int = 32) -> str:
    """URL-safe random secret (no quoting surprises in .env or SQL)."""
    while True:
        candidate = secrets.token_urlsafe(length)[:length]
        # Must never read back as an unfilled value
        if not is_placeholder(candidate):
            return candidate


def password_env_keys(settings: DeploySettings) -> list[str]:
    return [k.name for k in settings.env.keys if k.from_database == "password"]


def resolve_database_password(settings: DeploySettings) -> ResolvedPassword:
    configured = settings.database.password
    if configured:
        return ResolvedPassword(configured, "config")

    existing = parse_env_file(settings.env_path)
    for key in password_env_keys(settings):
        value = existing.get(key)
        if not is_placeholder(value):
            logger.debug("Database password taken from %s (%s)", settings.env_path, key)
            return ResolvedPassword(value, "env_file")

    logger.info("No database password configured — generating one")
    return ResolvedPassword(generate_password(), "generated")
