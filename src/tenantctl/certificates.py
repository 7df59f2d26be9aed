"""Wildcard certificate rotation for Apache and Asterisk.

The bundle has two residences that must hold identical bytes after a
successful rotation: the Apache copy (world-readable) and the Asterisk copy
(readable by the ``asterisk`` group only). Reloading Asterisk is best-effort
because the service may be legitimately stopped; reloading Apache is not,
since a failed reload after a certificate swap can leave it serving stale
material.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509

from .backups import BackupManager, BackupRecord
from .config import PermissionSpec
from .errors import ActivationError, StageWarning, WarningKind
from .fetcher import Fetcher, FetchResult
from .permissions import change_owner, install_file
from .providers.apache import ApacheError, ApacheProvider
from .providers.asterisk import AsteriskProvider

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertificateInfo:
    """Facts read from the leaf certificate of a PEM bundle."""

    subject: str
    not_valid_after: datetime
    certificates: int

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "subject": self.subject,
            "not_valid_after": self.not_valid_after.isoformat(),
            "certificates": self.certificates,
        }


@dataclass
class RotationResult:
    """Everything a certificate rotation did."""

    fetch: FetchResult
    web_cert: Path
    telephony_cert: Path
    web_backup: BackupRecord | None = None
    telephony_backup: BackupRecord | None = None
    info: CertificateInfo | None = None
    telephony_reloaded: bool = False
    warnings: list[StageWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "fetch": self.fetch.to_dict(),
            "web_cert": str(self.web_cert),
            "telephony_cert": str(self.telephony_cert),
            "info": self.info.to_dict() if self.info is not None else None,
            "telephony_reloaded": self.telephony_reloaded,
        }


def inspect_bundle(data: bytes) -> CertificateInfo:
    """Parse a PEM bundle and describe its first certificate.

    Raises ``ValueError`` when the bundle holds no parseable certificate.
    """
    certificates = x509.load_pem_x509_certificates(data)
    leaf = certificates[0]
    not_after = getattr(leaf, "not_valid_after_utc", None)
    if not isinstance(not_after, datetime):  # pragma: no cover - older cryptography
        not_after = leaf.not_valid_after.replace(tzinfo=UTC)
    return CertificateInfo(
        subject=leaf.subject.rfc4514_string(),
        not_valid_after=not_after,
        certificates=len(certificates),
    )


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class CertificateRotator:
    """Fetch a new bundle, install it for both services and reload them."""

    fetcher: Fetcher
    backups: BackupManager
    apache: ApacheProvider
    asterisk: AsteriskProvider
    web_cert: Path
    telephony_cert: Path
    web_permissions: PermissionSpec
    telephony_permissions: PermissionSpec
    warn_expiry_days: int = 30
    clock: Callable[[], datetime] = field(default_factory=lambda: _utc_now)

    def rotate(self, url: str) -> RotationResult:
        """Run the rotation steps in order; see the module docstring."""
        self.web_cert.parent.mkdir(parents=True, exist_ok=True)
        self.telephony_cert.parent.mkdir(parents=True, exist_ok=True)

        with self.fetcher.temporary(url, prefix="cert.", suffix=".pem") as fetched:
            result = RotationResult(
                fetch=fetched,
                web_cert=self.web_cert,
                telephony_cert=self.telephony_cert,
            )
            self._inspect(fetched.local_path, result)

            result.web_backup = self.backups.backup_if_exists(self.web_cert)
            install_file(fetched.local_path, self.web_cert, mode=self.web_permissions.mode)
            self._chown(self.web_cert, self.web_permissions, result)

        result.telephony_backup = self.backups.backup_if_exists(self.telephony_cert)
        install_file(self.web_cert, self.telephony_cert, mode=self.telephony_permissions.mode)
        self._chown(self.telephony_cert, self.telephony_permissions, result)

        if self.asterisk.available():
            outcome = self.asterisk.reload()
            if outcome.ok:
                result.telephony_reloaded = True
            else:
                result.warnings.append(outcome.as_warning(WarningKind.SERVICE_RELOAD))
        else:
            result.warnings.append(
                StageWarning(
                    kind=WarningKind.SERVICE_RELOAD,
                    message=f"{self.asterisk.binary} binary not found; skipping Asterisk reload.",
                )
            )

        try:
            self.apache.reload()
        except ApacheError as exc:
            raise ActivationError(f"Apache reload after certificate update failed: {exc}") from exc
        return result

    # ------------------------------------------------------------------
    def _inspect(self, path: Path, result: RotationResult) -> None:
        try:
            info = inspect_bundle(path.read_bytes())
        except ValueError as exc:
            result.warnings.append(
                StageWarning(
                    kind=WarningKind.CERTIFICATE,
                    message=f"Downloaded bundle is not a parseable PEM certificate: {exc}",
                    path=path,
                )
            )
            return
        result.info = info
        LOGGER.debug("certificate %s valid until %s", info.subject, info.not_valid_after)
        now = self.clock()
        if info.not_valid_after <= now:
            message = f"Certificate {info.subject} expired on {info.not_valid_after.isoformat()}"
        elif (info.not_valid_after - now).days <= self.warn_expiry_days:
            days = (info.not_valid_after - now).days
            message = (
                f"Certificate {info.subject} expires soon "
                f"({info.not_valid_after.isoformat()}, {days} day(s) remaining)"
            )
        else:
            return
        result.warnings.append(StageWarning(kind=WarningKind.CERTIFICATE, message=message))

    def _chown(self, path: Path, spec: PermissionSpec, result: RotationResult) -> None:
        outcome = change_owner(path, spec.owner, spec.group)
        if not outcome.ok:
            result.warnings.append(outcome.as_warning(WarningKind.SERVICE_RELOAD))


__all__ = ["CertificateInfo", "CertificateRotator", "RotationResult", "inspect_bundle"]
