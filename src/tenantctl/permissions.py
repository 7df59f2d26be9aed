"""File installation and best-effort ownership helpers."""
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from .errors import ActionOutcome


def install_file(source: Path, destination: Path, *, mode: int) -> None:
    """Atomically place a copy of *source* at *destination* with *mode*.

    The copy is staged next to the destination and moved into place with
    ``os.replace`` so readers never observe a partially written file.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(destination.parent), prefix=f".{destination.name}.")
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        shutil.copyfile(source, tmp_path)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, destination)
    finally:
        tmp_path.unlink(missing_ok=True)


def change_owner(path: Path, owner: str | None, group: str | None) -> ActionOutcome:
    """Try to ``chown`` *path*; report failure instead of raising."""
    action = f"chown {owner or ''}:{group or ''} {path}"
    try:
        shutil.chown(path, owner, group)
    except (LookupError, OSError) as exc:
        return ActionOutcome.failure(action, str(exc), path=path)
    return ActionOutcome.success(action, path=path)


def change_mode(path: Path, mode: int) -> ActionOutcome:
    """Try to ``chmod`` *path*; report failure instead of raising."""
    action = f"chmod {mode:04o} {path}"
    try:
        os.chmod(path, mode)
    except OSError as exc:
        return ActionOutcome.failure(action, str(exc), path=path)
    return ActionOutcome.success(action, path=path)


__all__ = ["change_mode", "change_owner", "install_file"]
