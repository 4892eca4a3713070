"""
RunLock — mutual exclusion between orchestrator invocations.

The lock is a small JSON file created with ``O_CREAT | O_EXCL`` so two
processes racing for it cannot both succeed. A held lock fails the
second invocation immediately; there is no waiting and no automatic
expiry. A lock left behind by a crashed process stays until an operator
removes it with ``deployctl unlock`` or ``deployctl reset``.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import socket
from datetime import UTC, datetime
from pathlib import Path
from types import FrameType
from typing import Any

from deployctl.core.errors import ResourceConflictError

logger = logging.getLogger(__name__)


class RunLock:
    """Exclusive, file-based run lock.

    Usage::

        with RunLock(settings.lock_path, command="install"):
            ...  # released on every exit path, including SIGTERM
    """

    def __init__(self, path: Path, command: str = ""):
        self._path = path
        self._command = command
        self._held = False
        self._previous_sigterm: Any = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Create the lock file or fail fast.

        Raises:
            ResourceConflictError: If another process holds the lock.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            holder = read_holder(self._path)
            detail = _describe_holder(holder)
            raise ResourceConflictError(
                f"Another deployctl run holds the lock {self._path}{detail}. "
                f"If no other run is active, remove it with 'deployctl unlock'.",
                resource="run-lock",
            ) from None

        payload = {
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "acquired_at": datetime.now(UTC).isoformat(),
            "command": self._command,
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        self._held = True
        logger.debug("Run lock acquired: %s (pid=%d)", self._path, payload["pid"])

    def release(self) -> None:
        """Remove the lock file if this instance holds it."""
        if not self._held:
            return
        try:
            self._path.unlink(missing_ok=True)
            logger.debug("Run lock released: %s", self._path)
        finally:
            self._held = False

    def __enter__(self) -> RunLock:
        self.acquire()
        self._install_sigterm_handler()
        return self

    def __exit__(self, *exc: object) -> None:
        try:
            self.release()
        finally:
            self._restore_sigterm_handler()

    # ── SIGTERM → SystemExit so the finally-clause runs ─────────

    def _install_sigterm_handler(self) -> None:
        try:
            self._previous_sigterm = signal.signal(signal.SIGTERM, _raise_system_exit)
        except ValueError:
            # signal handlers can only be installed from the main thread
            self._previous_sigterm = None

    def _restore_sigterm_handler(self) -> None:
        if self._previous_sigterm is None:
            return
        try:
            signal.signal(signal.SIGTERM, self._previous_sigterm)
        except ValueError:
            pass
        self._previous_sigterm = None


def _raise_system_exit(signum: int, frame: FrameType | None) -> None:
    raise SystemExit(128 + signum)


def read_holder(path: Path) -> dict[str, Any] | None:
    """Read the lock file's holder info (None if absent or unreadable)."""
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def force_release(path: Path) -> bool:
    """Operator override: remove a lock regardless of holder.

    Returns True if a lock file was removed.
    """
    if not path.exists():
        return False
    holder = read_holder(path)
    path.unlink(missing_ok=True)
    logger.warning("Run lock force-released: %s%s", path, _describe_holder(holder))
    return True


def holder_alive(holder: dict[str, Any] | None) -> bool:
    """Whether the recorded holder process still runs on this host."""
    if not holder:
        return False
    pid = holder.get("pid")
    if not isinstance(pid, int) or pid <= 0:
        return False
    if holder.get("hostname") not in (None, socket.gethostname()):
        # Cannot tell for another host
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _describe_holder(holder: dict[str, Any] | None) -> str:
    if not holder:
        return ""
    parts = []
    if holder.get("pid"):
        parts.append(f"pid {holder['pid']}")
    if holder.get("command"):
        parts.append(f"'{holder['command']}'")
    if holder.get("acquired_at"):
        parts.append(f"since {holder['acquired_at']}")
    return f" ({', '.join(parts)})" if parts else ""
