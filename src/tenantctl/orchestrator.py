"""Sequential provisioning pipeline.

Stages run strictly in order::

    prechecks -> sites -> activate -> rewrite -> certificate -> calendar

Every stage announces itself before acting so that the last status line of a
failed run names the stage that failed. A fatal error unwinds the whole run
immediately; nothing is rolled back (the backups taken along the way exist
for manual recovery). Warnings are collected in the report and in the
operation log, and never change the outcome of the run.
"""
from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from .assets import AssetRefresher, RefreshResult, UnzipExtractor
from .backups import BackupManager, BackupRecord
from .certificates import CertificateRotator, RotationResult
from .config import AppConfig
from .errors import (
    ActivationError,
    MissingDependency,
    PrivilegeError,
    ProvisioningError,
    StageWarning,
    WarningKind,
)
from .fetcher import Fetcher
from .logging import OperationScope, StructuredLogger
from .providers import ApacheError, ApacheProvider, AsteriskProvider, SystemdProvider
from .rewrite import RewriteReport, rewrite_hostname
from .sites import (
    ActivationResult,
    ProvisioningRequest,
    SiteActivator,
    SiteDefinitionGenerator,
    SiteWriteResult,
)
from .status import StatusReporter
from .templates import TemplateEngine


@dataclass
class ProvisioningReport:
    """Aggregate of every stage outcome for one run."""

    request: ProvisioningRequest
    sites: list[SiteWriteResult] = field(default_factory=list)
    activation: ActivationResult | None = None
    rewrite: RewriteReport | None = None
    rotation: RotationResult | None = None
    refresh: RefreshResult | None = None
    backups: list[BackupRecord] = field(default_factory=list)
    warnings: list[StageWarning] = field(default_factory=list)

    @property
    def hostname(self) -> str:
        """Return the tenant hostname provisioned by this run."""
        return self.sites[-1].definition.hostname if self.sites else self.request.subdomain

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable summary."""
        return {
            "subdomain": self.request.subdomain,
            "sites": [
                {**item.definition.to_dict(), "path": str(item.path), "changed": item.changed}
                for item in self.sites
            ],
            "activation": self._activation_dict(),
            "rewrite": self.rewrite.to_dict() if self.rewrite is not None else None,
            "rotation": self.rotation.to_dict() if self.rotation is not None else None,
            "refresh": self.refresh.to_dict() if self.refresh is not None else None,
            "backups": [record.to_dict() for record in self.backups],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }

    def _activation_dict(self) -> dict[str, object] | None:
        if self.activation is None:
            return None
        return {
            name: status.value if status is not None else None
            for name, status in self.activation.statuses.items()
        }


@dataclass
class Provisioner:
    """Run the provisioning stages for one subdomain."""

    config: AppConfig
    apache: ApacheProvider
    asterisk: AsteriskProvider
    reporter: StatusReporter
    logger: StructuredLogger
    backups: BackupManager = field(default_factory=BackupManager)
    extractor: UnzipExtractor = field(default_factory=UnzipExtractor)
    fetcher: Fetcher | None = None
    is_root: Callable[[], bool] = field(default_factory=lambda: _running_as_root)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        reporter: StatusReporter,
        logger: StructuredLogger,
    ) -> Provisioner:
        """Wire providers from *config*."""
        templates = TemplateEngine.with_overrides(config.templates_dir)
        apache = ApacheProvider(
            templates=templates,
            systemd=SystemdProvider(systemctl_bin=config.systemctl_bin),
            sites_available=config.apache.sites_available,
            a2ensite_bin=config.apache.a2ensite_bin,
            a2enmod_bin=config.apache.a2enmod_bin,
            apachectl_bin=config.apache.apachectl_bin,
            service=config.apache.service,
        )
        asterisk = AsteriskProvider(
            binary=config.asterisk.binary,
            reload_command=config.asterisk.reload_command,
        )
        return cls(config=config, apache=apache, asterisk=asterisk, reporter=reporter, logger=logger)

    def run(self, request: ProvisioningRequest) -> ProvisioningReport:
        """Execute every stage in order and return the report."""
        report = ProvisioningReport(request=request)
        with self.logger.operation(
            "provision",
            args={"subdomain": request.subdomain},
            target={"kind": "site", "base_domain": self.config.base_domain},
        ) as op:
            try:
                self._prechecks(op, report)
                self._sites(op, report)
                self._rewrite(op, report)
                self._certificate(op, report)
                self._calendar(op, report)
            except ProvisioningError as exc:
                op.error(
                    str(exc),
                    rc=int(exc.exit_code),
                    backups=[record.backup_path for record in self.backups.records],
                )
                raise
            finally:
                report.backups = list(self.backups.records)
            backups = [record.backup_path for record in report.backups]
            if report.warnings:
                op.warning(
                    "Provisioning completed with warnings.",
                    warnings=[warning.message for warning in report.warnings],
                    backups=backups,
                    context=report.to_dict(),
                )
            else:
                op.success("Provisioning completed.", backups=backups, context=report.to_dict())
        return report

    # Stages --------------------------------------------------------
    def _prechecks(self, op: OperationScope, report: ProvisioningReport) -> None:
        self.reporter.info("Checking prerequisites...")
        if self.config.require_root and not self.is_root():
            raise PrivilegeError("This command needs root. Re-run it with sudo.")
        missing = self.apache.missing_tools()
        if missing:
            raise MissingDependency(", ".join(missing))
        if self.fetcher is None:
            self.fetcher = Fetcher.probe(self.config.transports)
        op.add_step("prechecks.fetch", detail=f"transport={self.fetcher.transport.name}")

        try:
            loaded = self.apache.ssl_module_loaded()
        except ApacheError as exc:
            self._warn(
                op,
                report,
                StageWarning(kind=WarningKind.NOT_FOUND, message=f"Cannot list Apache modules: {exc}"),
                step="prechecks.ssl",
            )
            return
        if loaded:
            op.add_step("prechecks.ssl", status="noop", detail="ssl_module loaded")
            return
        self.reporter.info("Enabling Apache SSL module...")
        try:
            self.apache.enable_module("ssl")
        except ApacheError as exc:
            raise ActivationError(str(exc)) from exc
        op.add_step("prechecks.ssl", detail="a2enmod ssl")

    def _sites(self, op: OperationScope, report: ProvisioningReport) -> None:
        generator = SiteDefinitionGenerator(
            apache=self.apache,
            backups=self.backups,
            base_domain=self.config.base_domain,
            web_root=self.config.web_root,
            app_dir=self.config.app_dir,
            certificate_path=self.config.tls.web_cert,
        )
        definitions = generator.generate(report.request.subdomain)
        for definition in definitions:
            self.reporter.info(f"Creating Apache config for {definition.hostname}...")
            written = generator.write(definition)
            report.sites.append(written)
            if written.backup is not None:
                self.reporter.info(f"Backup created: {written.backup.backup_path}")
            op.add_step(
                "sites.write",
                status="success" if written.changed else "noop",
                detail=str(written.path),
            )

        self.reporter.info("Enabling sites and reloading Apache...")
        activation = SiteActivator(self.apache).activate(definitions)
        report.activation = activation
        for name, status in activation.statuses.items():
            op.add_step("sites.enable", status=status.value if status else "warning", detail=name)
        self._warn_all(op, report, activation.warnings, step="sites.enable")
        op.add_step("apache.reload", detail=self.config.apache.service)

    def _rewrite(self, op: OperationScope, report: ProvisioningReport) -> None:
        root = self.config.app_root
        new_host = report.hostname
        self.reporter.info(
            f"Replacing '{self.config.placeholder_host}' with '{new_host}' inside {root} (if present)..."
        )
        rewrite = rewrite_hostname(
            root,
            self.config.placeholder_host,
            new_host,
            exclude_dirs=self.config.rewrite.exclude_dirs,
            exclude_globs=self.config.rewrite.exclude_globs,
            backups=self.backups,
        )
        report.rewrite = rewrite
        if rewrite.files_changed:
            self.reporter.info(f"Replaced occurrences in {rewrite.files_changed} file(s).")
        op.add_step(
            "rewrite",
            status="success" if rewrite.files_changed else "noop",
            detail=f"{rewrite.files_changed} file(s) changed",
        )
        self._warn_all(op, report, rewrite.warnings, step="rewrite")

    def _certificate(self, op: OperationScope, report: ProvisioningReport) -> None:
        tls = self.config.tls
        self.reporter.info("Updating wildcard SSL certificate (Apache & Asterisk)...")
        self.reporter.info(f"Downloading wildcard cert from: {tls.remote_url}")
        rotator = CertificateRotator(
            fetcher=self._require_fetcher(),
            backups=self.backups,
            apache=self.apache,
            asterisk=self.asterisk,
            web_cert=tls.web_cert,
            telephony_cert=tls.telephony_cert,
            web_permissions=tls.web_permissions,
            telephony_permissions=tls.telephony_permissions,
            warn_expiry_days=tls.warn_expiry_days,
        )
        rotation = rotator.rotate(tls.remote_url)
        report.rotation = rotation
        op.add_step("certificate.install", detail=f"{tls.web_cert}, {tls.telephony_cert}")
        op.add_step(
            "asterisk.reload",
            status="success" if rotation.telephony_reloaded else "warning",
        )
        op.add_step("apache.reload", detail=self.config.apache.service)
        self._warn_all(op, report, rotation.warnings, step="certificate")

    def _calendar(self, op: OperationScope, report: ProvisioningReport) -> None:
        calendar = self.config.calendar
        self.reporter.info("Updating calendar view file...")
        self.reporter.info(f"Downloading calendar package from: {calendar.remote_url}")
        refresher = AssetRefresher(
            fetcher=self._require_fetcher(),
            backups=self.backups,
            extractor=self.extractor,
            owner=self.config.service_user,
            group=self.config.service_group,
        )
        refresh = refresher.refresh(calendar.remote_url, self.config.calendar_dir, calendar.target)
        report.refresh = refresh
        if refresh.present:
            self.reporter.info(f"{calendar.target} updated and permissions set.")
        op.add_step(
            "calendar.refresh",
            status="success" if refresh.present else "warning",
            detail=str(refresh.target),
        )
        self._warn_all(op, report, refresh.warnings, step="calendar")

    # Helpers -------------------------------------------------------
    def _require_fetcher(self) -> Fetcher:
        if self.fetcher is None:
            self.fetcher = Fetcher.probe(self.config.transports)
        return self.fetcher

    def _warn(
        self,
        op: OperationScope,
        report: ProvisioningReport,
        warning: StageWarning,
        *,
        step: str,
    ) -> None:
        self.reporter.warn(warning.message)
        op.add_step(step, status="warning", detail=warning.message)
        report.warnings.append(warning)

    def _warn_all(
        self,
        op: OperationScope,
        report: ProvisioningReport,
        warnings: Sequence[StageWarning],
        *,
        step: str,
    ) -> None:
        for warning in warnings:
            self._warn(op, report, warning, step=step)


def _running_as_root() -> bool:
    return os.geteuid() == 0


__all__ = ["ProvisioningReport", "Provisioner"]
