"""Provider interfaces for tenantctl."""
from __future__ import annotations

from .apache import ApacheError, ApacheProvider, EnableStatus
from .asterisk import AsteriskProvider
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "ApacheError",
    "ApacheProvider",
    "AsteriskProvider",
    "EnableStatus",
    "SystemdError",
    "SystemdProvider",
]
