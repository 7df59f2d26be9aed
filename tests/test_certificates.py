"""Tests for wildcard certificate rotation."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from tenantctl.backups import BackupManager
from tenantctl.certificates import CertificateRotator, inspect_bundle
from tenantctl.config import PermissionSpec
from tenantctl.errors import ActionOutcome, ActivationError, WarningKind
from tenantctl.fetcher import Fetcher
from tenantctl.providers.apache import ApacheError, ApacheProvider
from tenantctl.providers.asterisk import AsteriskProvider
from tenantctl.providers.systemd import SystemdProvider
from tenantctl.templates import TemplateEngine

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def _certificate_pem(name: str = "*.gesditel.app", *, days: int = 90) -> bytes:
    """Create a self-signed certificate valid for *days* from ``NOW``."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(NOW - timedelta(days=1))
        .not_valid_after(NOW + timedelta(days=days))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


class StaticTransport:
    """Transport that 'downloads' a fixed payload."""

    name = "static"

    def __init__(self, payload: bytes) -> None:
        """Store the payload served for every URL."""
        self.payload = payload
        self.urls: list[str] = []

    def is_available(self) -> bool:
        """Always available."""
        return True

    def fetch(self, url: str, dest: Path) -> None:
        """Write the payload to *dest*."""
        self.urls.append(url)
        dest.write_bytes(self.payload)


@pytest.fixture
def reloads(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Record service reloads instead of running them."""
    calls: list[str] = []

    def apache_reload(self: ApacheProvider) -> None:
        calls.append("apache")

    def asterisk_reload(self: AsteriskProvider) -> ActionOutcome:
        calls.append("asterisk")
        return ActionOutcome.success("asterisk -rx 'core reload'")

    monkeypatch.setattr(ApacheProvider, "reload", apache_reload)
    monkeypatch.setattr(AsteriskProvider, "available", lambda self: True)
    monkeypatch.setattr(AsteriskProvider, "reload", asterisk_reload)
    return calls


def _rotator(
    tmp_path: Path,
    payload: bytes,
    current_user: str,
    current_group: str,
) -> CertificateRotator:
    return CertificateRotator(
        fetcher=Fetcher(StaticTransport(payload)),
        backups=BackupManager(clock=lambda: NOW),
        apache=ApacheProvider(
            templates=TemplateEngine.with_overrides(None),
            systemd=SystemdProvider(),
            sites_available=tmp_path / "sites-available",
        ),
        asterisk=AsteriskProvider(),
        web_cert=tmp_path / "ssl" / "wildcard" / "certificate.pem",
        telephony_cert=tmp_path / "asterisk" / "keys" / "asterisk.pem",
        web_permissions=PermissionSpec(owner=current_user, group=current_group, mode=0o644),
        telephony_permissions=PermissionSpec(owner=current_user, group=current_group, mode=0o640),
        clock=lambda: NOW,
    )


def test_rotation_installs_identical_copies_with_distinct_modes(
    tmp_path: Path,
    reloads: list[str],
    current_user: str,
    current_group: str,
) -> None:
    """Both residences hold the downloaded bytes with their own modes."""
    payload = _certificate_pem()
    rotator = _rotator(tmp_path, payload, current_user, current_group)

    result = rotator.rotate("https://certs.internal/wildcard.pem")

    assert rotator.web_cert.read_bytes() == payload
    assert rotator.telephony_cert.read_bytes() == payload
    assert rotator.web_cert.stat().st_mode & 0o777 == 0o644
    assert rotator.telephony_cert.stat().st_mode & 0o777 == 0o640
    assert result.telephony_reloaded is True
    assert result.info is not None and result.info.subject == "CN=*.gesditel.app"
    assert result.warnings == []
    assert reloads == ["asterisk", "apache"]
    assert not result.fetch.local_path.exists()


def test_rotation_backs_up_previous_certificates(
    tmp_path: Path,
    reloads: list[str],
    current_user: str,
    current_group: str,
) -> None:
    """Existing certificates are copied aside before replacement."""
    rotator = _rotator(tmp_path, _certificate_pem(), current_user, current_group)
    for path in (rotator.web_cert, rotator.telephony_cert):
        path.parent.mkdir(parents=True)
        path.write_bytes(b"old certificate")

    result = rotator.rotate("https://certs.internal/wildcard.pem")

    assert result.web_backup is not None and result.telephony_backup is not None
    assert result.web_backup.backup_path.read_bytes() == b"old certificate"
    assert result.telephony_backup.backup_path.read_bytes() == b"old certificate"
    assert result.web_backup.backup_path.name == "certificate.pem.bkp-20240601-120000"


def test_missing_asterisk_is_a_warning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    reloads: list[str],
    current_user: str,
    current_group: str,
) -> None:
    """Without an asterisk binary the certificate is still installed and Apache reloaded."""
    monkeypatch.setattr(AsteriskProvider, "available", lambda self: False)
    payload = _certificate_pem()
    rotator = _rotator(tmp_path, payload, current_user, current_group)

    result = rotator.rotate("https://certs.internal/wildcard.pem")

    assert rotator.telephony_cert.read_bytes() == payload
    assert result.telephony_reloaded is False
    assert [warning.kind for warning in result.warnings] == [WarningKind.SERVICE_RELOAD]
    assert "skipping Asterisk reload" in result.warnings[0].message
    assert reloads == ["apache"]


def test_asterisk_reload_failure_is_a_warning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    reloads: list[str],
    current_user: str,
    current_group: str,
) -> None:
    """A stopped Asterisk does not fail the rotation."""
    monkeypatch.setattr(
        AsteriskProvider,
        "reload",
        lambda self: ActionOutcome.failure("asterisk -rx 'core reload'", "exit 1"),
    )
    rotator = _rotator(tmp_path, _certificate_pem(), current_user, current_group)

    result = rotator.rotate("https://certs.internal/wildcard.pem")

    assert result.telephony_reloaded is False
    assert result.warnings[0].message == "asterisk -rx 'core reload' failed: exit 1"
    assert reloads == ["apache"]


def test_apache_reload_failure_is_fatal(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    reloads: list[str],
    current_user: str,
    current_group: str,
) -> None:
    """A failed Apache reload after installation aborts the run."""

    def failing_reload(self: ApacheProvider) -> None:
        raise ApacheError("systemctl reload failed (exit 1): bad certificate")

    monkeypatch.setattr(ApacheProvider, "reload", failing_reload)
    rotator = _rotator(tmp_path, _certificate_pem(), current_user, current_group)

    with pytest.raises(ActivationError, match="bad certificate"):
        rotator.rotate("https://certs.internal/wildcard.pem")

    assert rotator.web_cert.exists()


def test_expiring_certificate_warns(
    tmp_path: Path,
    reloads: list[str],
    current_user: str,
    current_group: str,
) -> None:
    """Certificates inside the warning window are installed with a warning."""
    rotator = _rotator(tmp_path, _certificate_pem(days=5), current_user, current_group)

    result = rotator.rotate("https://certs.internal/wildcard.pem")

    assert [warning.kind for warning in result.warnings] == [WarningKind.CERTIFICATE]
    assert "expires soon" in result.warnings[0].message


def test_unparseable_bundle_warns_but_installs(
    tmp_path: Path,
    reloads: list[str],
    current_user: str,
    current_group: str,
) -> None:
    """Non-PEM content is installed as fetched, with a certificate warning."""
    rotator = _rotator(tmp_path, b"not a certificate\n", current_user, current_group)

    result = rotator.rotate("https://certs.internal/wildcard.pem")

    assert result.info is None
    assert result.warnings[0].kind is WarningKind.CERTIFICATE
    assert rotator.telephony_cert.read_bytes() == b"not a certificate\n"


def test_inspect_bundle_counts_certificates() -> None:
    """Chains report the leaf subject and the number of certificates."""
    bundle = _certificate_pem("leaf.example") + _certificate_pem("intermediate.example")

    info = inspect_bundle(bundle)

    assert info.subject == "CN=leaf.example"
    assert info.certificates == 2
    assert info.not_valid_after.tzinfo is not None
