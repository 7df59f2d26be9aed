"""Apache provider for writing, enabling and reloading virtual hosts."""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..templates import TemplateEngine
from .systemd import SystemdError, SystemdProvider

LOGGER = logging.getLogger(__name__)

SITE_TEMPLATE = "apache/site.conf.j2"


class ApacheError(RuntimeError):
    """Raised when Apache tooling reports a failure."""


class EnableStatus(Enum):
    """Outcome of ``a2ensite`` for a single site."""

    ENABLED = "enabled"
    ALREADY_ENABLED = "already-enabled"


@dataclass(slots=True)
class ApacheProvider:
    """Manage Debian-style Apache site definitions."""

    templates: TemplateEngine
    systemd: SystemdProvider
    sites_available: Path = Path("/etc/apache2/sites-available")
    a2ensite_bin: str = "a2ensite"
    a2enmod_bin: str = "a2enmod"
    apachectl_bin: str = "apache2ctl"
    service: str = "apache2"

    def site_name(self, hostname: str) -> str:
        """Return the configuration file name for *hostname*."""
        return f"{hostname}.conf"

    def site_path(self, hostname: str) -> Path:
        """Return the path of the site definition for *hostname*."""
        return self.sites_available / self.site_name(hostname)

    def write_site(self, hostname: str, context: Mapping[str, object]) -> bool:
        """Render the virtual-host template for *hostname*; True when changed."""
        return self.templates.render_to_path(
            SITE_TEMPLATE,
            self.site_path(hostname),
            context,
            mode=0o644,
        )

    def enable(self, site_name: str) -> EnableStatus:
        """Enable *site_name* with ``a2ensite``; already-enabled is not an error."""
        result = self._run([self.a2ensite_bin, site_name])
        output = f"{result.stdout or ''}\n{result.stderr or ''}".lower()
        if "already enabled" in output:
            return EnableStatus.ALREADY_ENABLED
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise ApacheError(
                f"{self.a2ensite_bin} {site_name} failed (exit {result.returncode}): {message}"
            )
        return EnableStatus.ENABLED

    def ssl_module_loaded(self) -> bool:
        """Return True when ``apache2ctl -M`` lists ``ssl_module``."""
        result = self._run([self.apachectl_bin, "-M"])
        return any(
            line.strip().lower().startswith("ssl_module")
            for line in (result.stdout or "").splitlines()
        )

    def enable_module(self, module: str) -> None:
        """Enable an Apache module (safe to repeat)."""
        result = self._run([self.a2enmod_bin, module])
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise ApacheError(
                f"{self.a2enmod_bin} {module} failed (exit {result.returncode}): {message}"
            )

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload Apache through systemd."""
        try:
            return self.systemd.reload(self.service)
        except SystemdError as exc:
            raise ApacheError(str(exc)) from exc

    def missing_tools(self) -> list[str]:
        """Return required binaries that are not installed."""
        missing = [] if shutil.which(self.a2ensite_bin) else [self.a2ensite_bin]
        if not self.systemd.available():
            missing.append(self.systemd.systemctl_bin)
        return missing

    # ------------------------------------------------------------------
    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("running %s", " ".join(args))
        try:
            return subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ApacheError(f"{args[0]} not found: {exc}") from exc


__all__ = ["ApacheError", "ApacheProvider", "EnableStatus"]
