"""
State file persistence — atomic read/write for InstallState.

The state lives in ``<state_dir>/install.json``. Writes go to a temp
file in the same directory and are renamed into place, so a crash
mid-write leaves the previous (last verified) phase intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from deployctl.core.models.state import InstallState

logger = logging.getLogger(__name__)


def load_state(path: Path) -> InstallState:
    """Load install state from a JSON file.

    Returns a fresh ``not_started`` state when the file is missing or
    cannot be parsed; the provisioners re-query every resource anyway.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return InstallState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = InstallState.model_validate(data)
        logger.debug("Loaded state from %s (phase=%s)", path, state.phase)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return InstallState()
    except (ValidationError, OSError) as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return InstallState()


def save_state(state: InstallState, path: Path) -> None:
    """Save install state (atomic write).

    Raises:
        OSError: If the state directory is not writable.
    """
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".install_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("State saved to %s (phase=%s)", path, state.phase)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s", path)
        raise


class StateStore:
    """Load/save pair bound to one state file path."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> InstallState:
        return load_state(self._path)

    def save(self, state: InstallState) -> None:
        save_state(state, self._path)

    def exists(self) -> bool:
        return self._path.is_file()

    def delete(self) -> bool:
        """Remove the state file. Returns True if one existed."""
        if not self._path.is_file():
            return False
        self._path.unlink()
        logger.info("State file removed: %s", self._path)
        return True
