"""Tests for the systemd provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence

import pytest

from tenantctl.providers.systemd import SystemdError, SystemdProvider


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_reload_invokes_systemctl(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reload runs ``systemctl reload <unit>``."""
    calls: list[list[str]] = []

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        calls.append(list(args))
        return DummyResult()

    monkeypatch.setattr(subprocess, "run", fake_run)

    SystemdProvider().reload("apache2")

    assert calls == [["systemctl", "reload", "apache2"]]


def test_reload_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-zero exits include the unit output in the error."""

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        return DummyResult(returncode=1, stderr="Job for apache2.service failed.")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(SystemdError, match=r"reload apache2 failed \(exit 1\): Job for apache2"):
        SystemdProvider().reload("apache2")


def test_missing_systemctl_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing binary is reported as :class:`SystemdError`."""

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(SystemdError, match="not found"):
        SystemdProvider(systemctl_bin="/nonexistent/systemctl").reload("apache2")
