"""tenantctl: provision tenant subdomains on an Apache + Asterisk host."""
from __future__ import annotations

__all__ = ["__version__"]

# Keep in sync with ``pyproject.toml``.
__version__ = "0.1.0"
