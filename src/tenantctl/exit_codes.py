"""Process exit statuses returned by ``tenantctl``.

Warnings never change the status of a run; only the fatal error that stopped
it does.
"""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit status of a provisioning run, grouped by failure category."""

    OK = 0
    # Missing or malformed subdomain, invalid configuration file.
    VALIDATION = 2
    # Host not ready for provisioning.
    ENVIRONMENT = 3
    # A remote source or managed service failed.
    PROVIDER = 4


__all__ = ["ExitCode"]
