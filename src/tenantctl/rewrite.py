"""Replace a placeholder hostname throughout a deployed application tree.

Only text files are touched: a file whose first 8 KiB contain a NUL byte is
treated as binary and skipped, regardless of its extension. Occurrences that
are already part of the new hostname are left alone, so rewriting a tree
twice with the same pair changes nothing the second time even when the new
hostname contains the placeholder (``ademo.example`` vs ``demo.example``).
"""
from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .backups import BackupManager, BackupRecord, is_backup_path
from .errors import StageWarning, WarningKind

LOGGER = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8192
DEFAULT_EXCLUDE_DIRS: tuple[str, ...] = (".git", "node_modules")
DEFAULT_EXCLUDE_GLOBS: tuple[str, ...] = ("*.zip", "*.tar*", "*.bkp-*")


@dataclass
class RewriteReport:
    """Files rewritten (and skipped) under *root*."""

    root: Path
    changed_paths: list[Path] = field(default_factory=list)
    skipped_binary: list[Path] = field(default_factory=list)
    backups: list[BackupRecord] = field(default_factory=list)
    warnings: list[StageWarning] = field(default_factory=list)

    @property
    def files_changed(self) -> int:
        """Return the number of files rewritten."""
        return len(self.changed_paths)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "files_changed": self.files_changed,
            "changed_paths": [str(path) for path in self.changed_paths],
            "skipped_binary": [str(path) for path in self.skipped_binary],
        }


def looks_binary(path: Path) -> bool:
    """Return True when the start of *path* contains a NUL byte."""
    with path.open("rb") as handle:
        return b"\0" in handle.read(BINARY_SNIFF_BYTES)


def iter_candidate_files(
    root: Path,
    *,
    exclude_dirs: Sequence[str] = DEFAULT_EXCLUDE_DIRS,
    exclude_globs: Sequence[str] = DEFAULT_EXCLUDE_GLOBS,
) -> Iterator[Path]:
    """Yield regular files under *root* that are neither excluded nor backups."""
    excluded = set(exclude_dirs)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in excluded)
        for name in sorted(filenames):
            if any(fnmatch.fnmatch(name, pattern) for pattern in exclude_globs):
                continue
            path = Path(dirpath) / name
            if is_backup_path(path) or path.is_symlink() or not path.is_file():
                continue
            yield path


def substitute(data: bytes, old: bytes, new: bytes) -> bytes:
    """Replace *old* with *new* except where *old* already sits inside *new*."""
    if old == new:
        return data
    if old in new:
        return new.join(segment.replace(old, new) for segment in data.split(new))
    return data.replace(old, new)


def rewrite_hostname(
    root: Path,
    old_host: str,
    new_host: str,
    *,
    exclude_dirs: Sequence[str] = DEFAULT_EXCLUDE_DIRS,
    exclude_globs: Sequence[str] = DEFAULT_EXCLUDE_GLOBS,
    backups: BackupManager | None = None,
) -> RewriteReport:
    """Rewrite every occurrence of *old_host* with *new_host* below *root*.

    Each rewritten file is backed up first when *backups* is supplied. A
    missing *root* or a tree without occurrences yields a ``not-found``
    warning rather than an error. An empty *old_host* is a ``ValueError``.
    """
    if not old_host:
        raise ValueError("old_host must be a non-empty hostname.")
    report = RewriteReport(root=root)
    if not root.is_dir():
        report.warnings.append(
            StageWarning(
                kind=WarningKind.NOT_FOUND,
                message=f"Directory not found: {root}; skipping replacement.",
                path=root,
            )
        )
        return report

    old = old_host.encode("utf-8")
    new = new_host.encode("utf-8")
    for path in iter_candidate_files(root, exclude_dirs=exclude_dirs, exclude_globs=exclude_globs):
        data = path.read_bytes()
        if old not in data:
            continue
        if looks_binary(path):
            report.skipped_binary.append(path)
            continue
        updated = substitute(data, old, new)
        if updated == data:
            continue
        if backups is not None:
            record = backups.backup_if_exists(path)
            if record is not None:
                report.backups.append(record)
        path.write_bytes(updated)
        LOGGER.debug("rewrote %s", path)
        report.changed_paths.append(path)

    if not report.changed_paths:
        report.warnings.append(
            StageWarning(
                kind=WarningKind.NOT_FOUND,
                message=f"No occurrences of '{old_host}' found; nothing to replace.",
                path=root,
            )
        )
    return report


__all__ = [
    "DEFAULT_EXCLUDE_DIRS",
    "DEFAULT_EXCLUDE_GLOBS",
    "RewriteReport",
    "iter_candidate_files",
    "looks_binary",
    "rewrite_hostname",
    "substitute",
]
