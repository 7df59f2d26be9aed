"""Backup-before-mutate helpers.

Every destructive write performed by tenantctl is preceded by a copy of the
existing path to a timestamped sibling named ``<path>.bkp-YYYYMMDD-HHMMSS``.
Backups are never pruned. Two backups of the same path taken within the same
second share a name, so the later copy replaces the earlier one.
"""
from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

BACKUP_MARKER = ".bkp-"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class BackupError(RuntimeError):
    """Raised when a backup copy cannot be created."""


@dataclass(frozen=True)
class BackupRecord:
    """A snapshot taken immediately before *original_path* was overwritten."""

    original_path: Path
    backup_path: Path
    timestamp: datetime

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "original_path": str(self.original_path),
            "backup_path": str(self.backup_path),
            "timestamp": self.timestamp.isoformat(),
        }


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def backup_path_for(path: Path, moment: datetime) -> Path:
    """Return the sibling backup path for *path* taken at *moment*."""
    return path.with_name(f"{path.name}{BACKUP_MARKER}{moment.strftime(TIMESTAMP_FORMAT)}")


def copy_preserving(source: Path, destination: Path) -> None:
    """Copy *source* to *destination* keeping modes, timestamps and symlinks."""
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, destination, follow_symlinks=False)


@dataclass
class BackupManager:
    """Take backups and remember which ones were created during a run."""

    clock: Callable[[], datetime] = field(default_factory=lambda: _utc_now)
    records: list[BackupRecord] = field(default_factory=list)

    def backup_if_exists(self, path: Path) -> BackupRecord | None:
        """Copy *path* to a timestamped sibling when it exists.

        Returns ``None`` when there is nothing to back up. The original is
        never modified or removed.
        """
        if not path.exists() and not path.is_symlink():
            return None
        moment = self.clock()
        destination = backup_path_for(path, moment)
        try:
            copy_preserving(path, destination)
        except OSError as exc:
            raise BackupError(f"Failed to back up {path} to {destination}: {exc}") from exc
        record = BackupRecord(original_path=path, backup_path=destination, timestamp=moment)
        self.records.append(record)
        return record


def is_backup_path(path: Path) -> bool:
    """Return True when *path* looks like a backup produced by this module."""
    return BACKUP_MARKER in path.name


__all__ = [
    "BACKUP_MARKER",
    "BackupError",
    "BackupManager",
    "BackupRecord",
    "backup_path_for",
    "copy_preserving",
    "is_backup_path",
]
