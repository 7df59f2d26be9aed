"""Reload services managed by systemd."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class SystemdError(RuntimeError):
    """Raised when ``systemctl`` is missing or rejects a request."""


@dataclass(slots=True)
class SystemdProvider:
    """Issue unit-level requests through ``systemctl``."""

    systemctl_bin: str = "systemctl"

    def available(self) -> bool:
        """Return True when ``systemctl`` is on PATH."""
        return shutil.which(self.systemctl_bin) is not None

    def reload(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Ask *unit* to re-read its configuration without a restart."""
        result = self._run([self.systemctl_bin, "reload", unit])
        if result.returncode != 0:
            detail = (result.stderr or "").strip() or (result.stdout or "").strip() or "no output"
            raise SystemdError(
                f"{self.systemctl_bin} reload {unit} failed (exit {result.returncode}): {detail}"
            )
        return result

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc


__all__ = ["SystemdError", "SystemdProvider"]
