"""Refresh a generated file from a remote zip package."""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .backups import BackupManager, BackupRecord
from .errors import MissingDependency, ProvisioningError, StageWarning, WarningKind
from .exit_codes import ExitCode
from .fetcher import Fetcher, FetchResult
from .permissions import change_mode, change_owner

LOGGER = logging.getLogger(__name__)


class ExtractionError(ProvisioningError):
    """Raised when the archive tool reports a failure."""

    exit_code = ExitCode.PROVIDER


@dataclass(slots=True)
class UnzipExtractor:
    """Extract zip archives with the ``unzip`` command."""

    unzip_bin: str = "unzip"

    def available(self) -> bool:
        """Return True when ``unzip`` is installed."""
        return shutil.which(self.unzip_bin) is not None

    def extract(self, archive: Path, destination: Path) -> None:
        """Extract *archive* into *destination*, overwriting existing files."""
        if not self.available():
            raise MissingDependency(
                self.unzip_bin,
                f"The '{self.unzip_bin}' utility is required to extract {archive}. "
                f"Please install it (e.g., apt-get install -y {self.unzip_bin}) and re-run.",
            )
        result = self._run([self.unzip_bin, "-o", str(archive), "-d", str(destination)])
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise ExtractionError(
                f"{self.unzip_bin} failed on {archive} (exit {result.returncode}): {message}"
            )

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603, S607
            list(args),
            capture_output=True,
            text=True,
            check=False,
        )


@dataclass
class RefreshResult:
    """What an asset refresh fetched, replaced and normalised."""

    target: Path
    fetch: FetchResult | None = None
    backup: BackupRecord | None = None
    present: bool = False
    warnings: list[StageWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "target": str(self.target),
            "fetch": self.fetch.to_dict() if self.fetch is not None else None,
            "backup": self.backup.to_dict() if self.backup is not None else None,
            "present": self.present,
        }


@dataclass
class AssetRefresher:
    """Replace a file inside *extract_dir* with the copy from a zip package."""

    fetcher: Fetcher
    backups: BackupManager
    extractor: UnzipExtractor
    owner: str
    group: str
    mode: int = 0o644

    def refresh(self, url: str, extract_dir: Path, target_relative_path: Path) -> RefreshResult:
        """Fetch and extract the package, then normalise the target file."""
        extract_dir.mkdir(parents=True, exist_ok=True)
        target = extract_dir / target_relative_path
        result = RefreshResult(target=target)
        result.backup = self.backups.backup_if_exists(target)

        with self.fetcher.temporary(url, prefix="calendar.", suffix=".zip") as fetched:
            result.fetch = fetched
            self.extractor.extract(fetched.local_path, extract_dir)

        if not target.is_file():
            result.warnings.append(
                StageWarning(
                    kind=WarningKind.NOT_FOUND,
                    message=f"{target_relative_path} was not found after extraction. "
                    "Please verify the package contents.",
                    path=target,
                )
            )
            return result

        result.present = True
        for outcome in (
            change_owner(target, self.owner, self.group),
            change_mode(target, self.mode),
        ):
            if not outcome.ok:
                result.warnings.append(outcome.as_warning(WarningKind.SERVICE_RELOAD))
        LOGGER.debug("refreshed %s", target)
        return result


__all__ = ["AssetRefresher", "ExtractionError", "RefreshResult", "UnzipExtractor"]
