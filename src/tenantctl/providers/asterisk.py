"""Asterisk provider: live reloads through the remote console."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import ActionOutcome


@dataclass(slots=True)
class AsteriskProvider:
    """Issue control commands to a running Asterisk instance.

    Asterisk may be absent or stopped on a host; every call reports an
    :class:`ActionOutcome` instead of raising.
    """

    binary: str = "asterisk"
    reload_command: str = "core reload"

    def available(self) -> bool:
        """Return True when the Asterisk binary is installed."""
        return shutil.which(self.binary) is not None

    def reload(self) -> ActionOutcome:
        """Run ``asterisk -rx "<reload_command>"``."""
        action = f"{self.binary} -rx '{self.reload_command}'"
        if not self.available():
            return ActionOutcome.failure(action, f"{self.binary} binary not found")
        try:
            result = self._run([self.binary, "-rx", self.reload_command])
        except FileNotFoundError as exc:
            return ActionOutcome.failure(action, str(exc))
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            return ActionOutcome.failure(
                action,
                f"exit {result.returncode} (is Asterisk running?): {message}",
            )
        return ActionOutcome.success(action)

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603, S607
            list(args),
            capture_output=True,
            text=True,
            check=False,
        )


__all__ = ["AsteriskProvider"]
