"""Virtual-host generation and activation for a tenant subdomain."""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .backups import BackupManager, BackupRecord
from .errors import ActivationError, StageWarning, UsageError, WarningKind
from .providers.apache import ApacheError, ApacheProvider, EnableStatus

ADMIN_PREFIX = "config-"
_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


@dataclass(frozen=True)
class ProvisioningRequest:
    """Validated operator input for one provisioning run."""

    subdomain: str

    @classmethod
    def parse(cls, raw: str | None) -> ProvisioningRequest:
        """Validate *raw* as a DNS label and normalise it to lower case."""
        value = (raw or "").strip().lower()
        if not value:
            raise UsageError("Usage: tenantctl <subdomain>")
        if not _LABEL_RE.match(value):
            raise UsageError(
                f"Invalid subdomain {raw!r}: use a single label of letters, digits and "
                "inner hyphens (at most 63 characters, no dots; the wildcard "
                "certificate covers one level below the base domain)."
            )
        return cls(subdomain=value)


@dataclass(frozen=True)
class SiteDefinition:
    """Binding of a hostname to a document root and certificate."""

    hostname: str
    document_root: Path
    certificate_path: Path

    @property
    def config_name(self) -> str:
        """Return the site configuration file name."""
        return f"{self.hostname}.conf"

    def template_context(self) -> dict[str, object]:
        """Return the variables consumed by the virtual-host template."""
        return {
            "hostname": self.hostname,
            "document_root": str(self.document_root),
            "certificate_path": str(self.certificate_path),
            "http_port": 80,
            "https_port": 443,
        }

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "hostname": self.hostname,
            "document_root": str(self.document_root),
            "certificate_path": str(self.certificate_path),
            "config_name": self.config_name,
        }


@dataclass(frozen=True)
class SiteWriteResult:
    """Where a definition was written and what it replaced."""

    definition: SiteDefinition
    path: Path
    changed: bool
    backup: BackupRecord | None


@dataclass
class SiteDefinitionGenerator:
    """Derive and write the administrative and tenant virtual hosts."""

    apache: ApacheProvider
    backups: BackupManager
    base_domain: str
    web_root: Path
    app_dir: str
    certificate_path: Path

    def generate(self, subdomain: str) -> tuple[SiteDefinition, SiteDefinition]:
        """Return ``(administrative, tenant)`` definitions for *subdomain*."""
        admin = SiteDefinition(
            hostname=f"{ADMIN_PREFIX}{subdomain}.{self.base_domain}",
            document_root=self.web_root,
            certificate_path=self.certificate_path,
        )
        tenant = SiteDefinition(
            hostname=f"{subdomain}.{self.base_domain}",
            document_root=self.web_root / self.app_dir,
            certificate_path=self.certificate_path,
        )
        return admin, tenant

    def write(self, definition: SiteDefinition) -> SiteWriteResult:
        """Back up the existing file, then render *definition* to disk."""
        path = self.apache.site_path(definition.hostname)
        backup = self.backups.backup_if_exists(path)
        changed = self.apache.write_site(definition.hostname, definition.template_context())
        return SiteWriteResult(definition=definition, path=path, changed=changed, backup=backup)


@dataclass
class ActivationResult:
    """Per-site enable status plus tolerated problems."""

    statuses: dict[str, EnableStatus | None] = field(default_factory=dict)
    warnings: list[StageWarning] = field(default_factory=list)
    reloaded: bool = False


@dataclass
class SiteActivator:
    """Enable generated sites and reload Apache once."""

    apache: ApacheProvider

    def activate(self, definitions: Sequence[SiteDefinition]) -> ActivationResult:
        """Enable every definition, then reload; a failed reload is fatal."""
        result = ActivationResult()
        for definition in definitions:
            try:
                result.statuses[definition.config_name] = self.apache.enable(definition.config_name)
            except ApacheError as exc:
                result.statuses[definition.config_name] = None
                result.warnings.append(
                    StageWarning(
                        kind=WarningKind.SERVICE_RELOAD,
                        message=str(exc),
                        path=self.apache.site_path(definition.hostname),
                    )
                )
        try:
            self.apache.reload()
        except ApacheError as exc:
            raise ActivationError(f"Apache reload failed: {exc}") from exc
        result.reloaded = True
        return result


__all__ = [
    "ActivationResult",
    "ProvisioningRequest",
    "SiteActivator",
    "SiteDefinition",
    "SiteDefinitionGenerator",
    "SiteWriteResult",
]
