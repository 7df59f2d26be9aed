"""Error taxonomy and warning records shared by the provisioning stages.

Fatal conditions are exceptions carrying the exit code the CLI should use.
Non-fatal conditions are plain :class:`StageWarning` values that stages return
to the orchestrator; they are logged and reported but never change the exit
status of a run.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .exit_codes import ExitCode


class ProvisioningError(RuntimeError):
    """Base class for errors that abort a provisioning run."""

    exit_code: ExitCode = ExitCode.ENVIRONMENT


class UsageError(ProvisioningError):
    """Raised when the operator supplied missing or malformed input."""

    exit_code = ExitCode.VALIDATION


class MissingDependency(ProvisioningError):
    """Raised when a required external tool is not installed."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, tool: str, remediation: str | None = None) -> None:
        """Record the missing *tool* and an optional remediation hint."""
        self.tool = tool
        self.remediation = remediation or f"Install '{tool}' and re-run."
        super().__init__(f"Missing required command: {tool}. {self.remediation}")


class PrivilegeError(ProvisioningError):
    """Raised when the run needs root privileges it does not have."""

    exit_code = ExitCode.ENVIRONMENT


class FetchError(ProvisioningError):
    """Raised when a remote resource cannot be retrieved."""

    exit_code = ExitCode.PROVIDER


class NoTransportAvailable(FetchError):
    """Raised when none of the supported download tools is installed."""


class EmptyDownload(FetchError):
    """Raised when a download completed but produced a zero-length file."""


class ActivationError(ProvisioningError):
    """Raised when the web server refuses to reload its configuration."""

    exit_code = ExitCode.PROVIDER


class WarningKind(Enum):
    """Categories of non-fatal conditions raised during a run."""

    SERVICE_RELOAD = "service-reload"
    NOT_FOUND = "not-found"
    CERTIFICATE = "certificate"


@dataclass(frozen=True)
class StageWarning:
    """A condition that was reported and deliberately tolerated."""

    kind: WarningKind
    message: str
    path: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "path": str(self.path) if self.path is not None else None,
        }


@dataclass(frozen=True)
class ActionOutcome:
    """Result of a best-effort action such as ``chown`` or a service reload.

    A failed outcome is not an exception: the caller decides whether to
    downgrade it to a :class:`StageWarning` via :meth:`as_warning`.
    """

    action: str
    ok: bool
    error: str | None = None
    path: Path | None = None

    @classmethod
    def success(cls, action: str, *, path: Path | None = None) -> ActionOutcome:
        """Return a successful outcome for *action*."""
        return cls(action=action, ok=True, path=path)

    @classmethod
    def failure(cls, action: str, error: str, *, path: Path | None = None) -> ActionOutcome:
        """Return a failed outcome for *action* with *error* detail."""
        return cls(action=action, ok=False, error=error, path=path)

    def as_warning(self, kind: WarningKind = WarningKind.SERVICE_RELOAD) -> StageWarning:
        """Downgrade this failed outcome to a warning."""
        if self.ok:
            raise ValueError(f"Outcome for {self.action!r} succeeded; nothing to downgrade.")
        return StageWarning(kind=kind, message=f"{self.action} failed: {self.error}", path=self.path)


__all__ = [
    "ActionOutcome",
    "ActivationError",
    "EmptyDownload",
    "FetchError",
    "MissingDependency",
    "NoTransportAvailable",
    "PrivilegeError",
    "ProvisioningError",
    "StageWarning",
    "UsageError",
    "WarningKind",
]
