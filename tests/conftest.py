"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import grp
import os
import pwd
from collections.abc import Callable
from pathlib import Path

import pytest

from tenantctl.config import AppConfig, load_config


@pytest.fixture
def current_user() -> str:
    """Return the name of the user running the tests."""
    return pwd.getpwuid(os.getuid()).pw_name


@pytest.fixture
def current_group() -> str:
    """Return the primary group name of the user running the tests."""
    return grp.getgrgid(os.getgid()).gr_name


@pytest.fixture
def make_config(
    tmp_path: Path,
    current_user: str,
    current_group: str,
) -> Callable[..., AppConfig]:
    """Return a factory building an :class:`AppConfig` rooted in ``tmp_path``.

    Ownership targets the current user so that ``chown`` succeeds without root.
    """

    def factory(**extra: object) -> AppConfig:
        permission = {"owner": current_user, "group": current_group}
        overrides: dict[str, object] = {
            "web_root": str(tmp_path / "www"),
            "logs_dir": str(tmp_path / "logs"),
            "templates_dir": str(tmp_path / "templates"),
            "service_user": current_user,
            "service_group": current_group,
            "require_root": False,
            "apache": {"sites_available": str(tmp_path / "sites-available")},
            "tls": {
                "remote_url": "https://certs.internal/wildcard.pem",
                "web_cert": str(tmp_path / "ssl" / "certificate.pem"),
                "telephony_cert": str(tmp_path / "asterisk" / "keys" / "asterisk.pem"),
                "web_permissions": {**permission, "mode": "0644"},
                "telephony_permissions": {**permission, "mode": "0640"},
            },
            "calendar": {"remote_url": "https://assets.internal/calendar.zip"},
        }
        overrides.update(extra)
        return load_config(config_file=tmp_path / "missing.yml", env={}, overrides=overrides)

    return factory
