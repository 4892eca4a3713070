"""
Backup use case — tar.gz snapshots of the project directory.

Archives go to ``<project>/backups/backup_YYYYMMDD_HHMMSS.tar.gz``.
Dependencies, VCS metadata and the backups themselves are excluded;
only the newest ``keep`` archives are retained.
"""

from __future__ import annotations

import logging
import tarfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from deployctl.core.models.settings import DeploySettings

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = frozenset({"node_modules", ".git", "backups"})
BACKUP_PREFIX = "backup_"
BACKUP_SUFFIX = ".tar.gz"


@dataclass
class BackupResult:
    path: Path | None = None
    size_bytes: int = 0
    removed: list[Path] = field(default_factory=list)
    kept: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error:
            return {"error": self.error}
        return {
            "path": str(self.path) if self.path else None,
            "size_bytes": self.size_bytes,
            "removed": [str(p) for p in self.removed],
            "kept": self.kept,
        }


def _exclude(info: tarfile.TarInfo) -> tarfile.TarInfo | None:
    parts = Path(info.name).parts
    if any(part in EXCLUDED_DIRS for part in parts):
        return None
    return info


def list_backups(backup_dir: Path) -> list[Path]:
    """Existing archives, newest first (names sort by timestamp)."""
    if not backup_dir.is_dir():
        return []
    return sorted(backup_dir.glob(f"{BACKUP_PREFIX}*{BACKUP_SUFFIX}"), reverse=True)


def prune_backups(backup_dir: Path, keep: int) -> list[Path]:
    """Delete all but the newest ``keep`` archives. Returns removed paths."""
    removed = []
    for old in list_backups(backup_dir)[max(keep, 0):]:
        old.unlink(missing_ok=True)
        removed.append(old)
        logger.info("Removed old backup: %s", old.name)
    return removed


def create_backup(settings: DeploySettings, *, keep: int = 5, now: datetime | None = None) -> BackupResult:
    """Archive the project directory and apply retention."""
    root = settings.project_root
    result = BackupResult()
    if not root.is_dir():
        result.error = f"Project directory does not exist: {root}"
        return result

    backup_dir = settings.backup_dir
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    target = backup_dir / f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"

    try:
        with tarfile.open(target, "w:gz") as tar:
            for child in sorted(root.iterdir()):
                if child.name in EXCLUDED_DIRS:
                    continue
                tar.add(child, arcname=child.name, filter=_exclude)
    except OSError as e:
        target.unlink(missing_ok=True)
        result.error = f"Backup failed: {e}"
        logger.error(result.error)
        return result

    result.path = target
    result.size_bytes = target.stat().st_size
    logger.info("Backup created: %s (%d bytes)", target, result.size_bytes)

    result.removed = prune_backups(backup_dir, keep)
    result.kept = len(list_backups(backup_dir))
    return result
