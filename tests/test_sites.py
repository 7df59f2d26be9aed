"""Tests for virtual-host generation and activation."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

import pytest

from tenantctl.backups import BackupManager
from tenantctl.errors import ActivationError, UsageError
from tenantctl.providers.apache import ApacheError, ApacheProvider, EnableStatus
from tenantctl.providers.systemd import SystemdProvider
from tenantctl.sites import (
    ProvisioningRequest,
    SiteActivator,
    SiteDefinitionGenerator,
)
from tenantctl.templates import TemplateEngine


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def apache(tmp_path: Path) -> ApacheProvider:
    """Return an Apache provider writing into ``tmp_path``."""
    return ApacheProvider(
        templates=TemplateEngine.with_overrides(None),
        systemd=SystemdProvider(),
        sites_available=tmp_path / "sites-available",
    )


@pytest.fixture
def generator(apache: ApacheProvider) -> SiteDefinitionGenerator:
    """Return a generator for the gesditel.app domain."""
    return SiteDefinitionGenerator(
        apache=apache,
        backups=BackupManager(clock=lambda: datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)),
        base_domain="gesditel.app",
        web_root=Path("/var/www/html"),
        app_dir="qalliEz",
        certificate_path=Path("/etc/ssl/wildcard/certificate.pem"),
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("acme", "acme"), ("  Acme-01 ", "acme-01")],
)
def test_request_normalises_label(raw: str, expected: str) -> None:
    """Labels are trimmed and lower-cased."""
    assert ProvisioningRequest.parse(raw).subdomain == expected


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_request_requires_subdomain(raw: str | None) -> None:
    """Missing input prints the usage line."""
    with pytest.raises(UsageError, match="Usage: tenantctl <subdomain>"):
        ProvisioningRequest.parse(raw)


@pytest.mark.parametrize("raw", ["acme.corp", "-acme", "acme_1", "a" * 64])
def test_request_rejects_invalid_labels(raw: str) -> None:
    """Only single DNS labels are accepted."""
    with pytest.raises(UsageError, match="Invalid subdomain.*single label"):
        ProvisioningRequest.parse(raw)


def test_generate_admin_and_tenant_definitions(generator: SiteDefinitionGenerator) -> None:
    """The admin host serves the web root and the tenant host the app directory."""
    admin, tenant = generator.generate("acme")

    assert admin.hostname == "config-acme.gesditel.app"
    assert admin.document_root == Path("/var/www/html")
    assert tenant.hostname == "acme.gesditel.app"
    assert tenant.document_root == Path("/var/www/html/qalliEz")
    assert admin.certificate_path == tenant.certificate_path
    assert tenant.config_name == "acme.gesditel.app.conf"


def test_written_sites_redirect_http_to_https(
    generator: SiteDefinitionGenerator,
    apache: ApacheProvider,
) -> None:
    """Each site file holds a redirect host and a TLS host."""
    for definition in generator.generate("acme"):
        result = generator.write(definition)
        content = result.path.read_text(encoding="utf-8")

        assert result.changed is True
        assert result.backup is None
        assert f"Redirect permanent / https://{definition.hostname}/" in content
        assert f"DocumentRoot {definition.document_root}" in content
        assert "SSLEngine on" in content
        assert "SSLCertificateFile /etc/ssl/wildcard/certificate.pem" in content
        assert "AllowOverride All" in content

    assert sorted(path.name for path in apache.sites_available.iterdir()) == [
        "acme.gesditel.app.conf",
        "config-acme.gesditel.app.conf",
    ]


def test_existing_site_is_backed_up_before_overwrite(
    generator: SiteDefinitionGenerator,
    apache: ApacheProvider,
) -> None:
    """A previous definition survives as a timestamped backup."""
    _, tenant = generator.generate("acme")
    existing = apache.site_path(tenant.hostname)
    existing.parent.mkdir(parents=True)
    existing.write_text("# hand edited\n", encoding="utf-8")

    result = generator.write(tenant)

    assert result.backup is not None
    assert result.backup.backup_path.name == "acme.gesditel.app.conf.bkp-20240102-030405"
    assert result.backup.backup_path.read_text(encoding="utf-8") == "# hand edited\n"
    assert "ServerName acme.gesditel.app" in existing.read_text(encoding="utf-8")


def test_rewriting_identical_site_reports_unchanged(generator: SiteDefinitionGenerator) -> None:
    """A second write renders the same bytes."""
    _, tenant = generator.generate("acme")
    first = generator.write(tenant)
    second = generator.write(tenant)

    assert first.path.read_text(encoding="utf-8")
    assert second.changed is False
    assert second.backup is not None


def test_activation_is_idempotent(
    monkeypatch: pytest.MonkeyPatch,
    generator: SiteDefinitionGenerator,
    apache: ApacheProvider,
) -> None:
    """Re-enabling already enabled sites succeeds and Apache reloads once per run."""
    enabled: set[str] = set()
    reloads: list[str] = []

    def fake_run(self: ApacheProvider, args: Sequence[str]) -> DummyResult:
        site = args[1]
        if site in enabled:
            return DummyResult(stdout=f"Site {site} already enabled")
        enabled.add(site)
        return DummyResult(stdout=f"Enabling site {site}.")

    def fake_reload(self: ApacheProvider) -> DummyResult:
        reloads.append(self.service)
        return DummyResult()

    monkeypatch.setattr(ApacheProvider, "_run", fake_run)
    monkeypatch.setattr(ApacheProvider, "reload", fake_reload)
    definitions = generator.generate("acme")
    activator = SiteActivator(apache)

    first = activator.activate(definitions)
    second = activator.activate(definitions)

    assert set(first.statuses.values()) == {EnableStatus.ENABLED}
    assert set(second.statuses.values()) == {EnableStatus.ALREADY_ENABLED}
    assert first.reloaded and second.reloaded
    assert reloads == ["apache2", "apache2"]
    assert second.warnings == []


def test_enable_failure_is_a_warning(
    monkeypatch: pytest.MonkeyPatch,
    generator: SiteDefinitionGenerator,
    apache: ApacheProvider,
) -> None:
    """A site that cannot be enabled is reported and the reload still happens."""

    def fake_run(self: ApacheProvider, args: Sequence[str]) -> DummyResult:
        return DummyResult(returncode=1, stderr="ERROR: Site does not exist!")

    monkeypatch.setattr(ApacheProvider, "_run", fake_run)
    monkeypatch.setattr(ApacheProvider, "reload", lambda self: DummyResult())

    result = SiteActivator(apache).activate(generator.generate("acme"))

    assert list(result.statuses.values()) == [None, None]
    assert len(result.warnings) == 2
    assert result.reloaded is True


def test_reload_failure_is_fatal(
    monkeypatch: pytest.MonkeyPatch,
    generator: SiteDefinitionGenerator,
    apache: ApacheProvider,
) -> None:
    """A rejected Apache reload aborts activation."""

    def fake_reload(self: ApacheProvider) -> DummyResult:
        raise ApacheError("Syntax error on line 3")

    monkeypatch.setattr(ApacheProvider, "_run", lambda self, args: DummyResult())
    monkeypatch.setattr(ApacheProvider, "reload", fake_reload)

    with pytest.raises(ActivationError, match="Syntax error on line 3") as excinfo:
        SiteActivator(apache).activate(generator.generate("acme"))

    assert excinfo.value.exit_code == 4
