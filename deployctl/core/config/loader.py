"""
Configuration loader — reads deploy.yml into DeploySettings.

deploy.yml is optional: without one the built-in defaults apply. An
explicitly requested file must exist. A few values can be overridden
from the process environment so secrets stay out of the YAML:

    DEPLOYCTL_STATE_DIR     state/lock/audit directory
    DEPLOYCTL_PROJECT_PATH  managed installation path
    DEPLOYCTL_DB_PASSWORD   database role password
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from deployctl.core.errors import ConfigError
from deployctl.core.models.settings import DeploySettings

logger = logging.getLogger(__name__)

# Default config filename
DEPLOY_CONFIG_FILE = "deploy.yml"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for deploy.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to deploy.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / DEPLOY_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(path: Path | None = None, *, search: bool = True) -> DeploySettings:
    """Load and validate deployment settings.

    Args:
        path: Explicit path to deploy.yml. Must exist when given.
        search: If True and no path is given, search upward from cwd.

    Returns:
        Validated DeploySettings (defaults when no file was found).

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid.
    """
    data: dict = {}

    if path is None and search:
        path = find_config_file()

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")

        logger.debug("Loading deploy config from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")
        data = loaded
    else:
        logger.info("No %s found — using built-in defaults", DEPLOY_CONFIG_FILE)

    _apply_env_overrides(data)

    try:
        settings = DeploySettings.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid deploy configuration: {e}") from e

    logger.info("Loaded settings for '%s' at %s", settings.app_name, settings.project_path)
    return settings


def _apply_env_overrides(data: dict) -> None:
    """Overlay DEPLOYCTL_* variables onto the raw config mapping."""
    state_dir = os.environ.get("DEPLOYCTL_STATE_DIR")
    if state_dir:
        data["state_dir"] = state_dir

    project_path = os.environ.get("DEPLOYCTL_PROJECT_PATH")
    if project_path:
        data["project_path"] = project_path

    db_password = os.environ.get("DEPLOYCTL_DB_PASSWORD")
    if db_password:
        database = data.setdefault("database", {})
        if not isinstance(database, dict):
            raise ConfigError("'database' must be a mapping")
        database["password"] = db_password
