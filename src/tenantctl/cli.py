"""Typer-powered command line entry point for ``tenantctl``.

The CLI takes exactly one positional argument, the tenant subdomain label.
Paths, remote URLs and service accounts come from configuration (see
:mod:`tenantctl.config`), not from flags.
"""
from __future__ import annotations

import textwrap
from typing import NoReturn

import typer
from rich.console import Console

from .backups import BackupError
from .config import AppConfig, ConfigError, load_config
from .errors import ProvisioningError, UsageError
from .exit_codes import ExitCode
from .logging import StructuredLogger
from .orchestrator import Provisioner
from .sites import ProvisioningRequest
from .status import StatusReporter

console = Console()
error_console = Console(stderr=True)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision a tenant subdomain.

        Creates the Apache virtual hosts for config-<subdomain> and
        <subdomain>, rewrites the placeholder hostname inside the deployed
        application, rotates the wildcard certificate for Apache and Asterisk
        and refreshes the calendar view. Safe to re-run.
        """
    ).strip(),
)


def _build_provisioner(
    config: AppConfig,
    reporter: StatusReporter,
    logger: StructuredLogger,
) -> Provisioner:
    return Provisioner.from_config(config, reporter=reporter, logger=logger)


def _command_error(reporter: StatusReporter, message: str, *, rc: int) -> NoReturn:
    """Emit an error status line and terminate the command."""
    reporter.error(message)
    raise typer.Exit(code=rc)


@app.command()
def provision(
    subdomain: str | None = typer.Argument(
        None,
        metavar="SUBDOMAIN",
        help="Single tenant label without dots, e.g. 'acme' for acme.<base-domain>.",
        show_default=False,
    ),
) -> None:
    """Provision SUBDOMAIN end to end."""
    reporter = StatusReporter(console=console, error_console=error_console)
    try:
        request = ProvisioningRequest.parse(subdomain)
    except UsageError as exc:
        _command_error(reporter, str(exc), rc=int(exc.exit_code))

    try:
        config = load_config()
    except ConfigError as exc:
        _command_error(reporter, f"Configuration error: {exc}", rc=int(ExitCode.VALIDATION))

    logger = StructuredLogger(config.logs_dir)
    provisioner = _build_provisioner(config, reporter, logger)
    try:
        report = provisioner.run(request)
    except ProvisioningError as exc:
        _command_error(reporter, str(exc), rc=int(exc.exit_code))
    except BackupError as exc:
        _command_error(reporter, str(exc), rc=int(ExitCode.ENVIRONMENT))
    except OSError as exc:
        _command_error(reporter, f"Filesystem error: {exc}", rc=int(ExitCode.ENVIRONMENT))

    summary = (
        f"All done! Sites configured, SSL updated, services reloaded and calendar view "
        f"refreshed for {report.hostname}."
    )
    if report.warnings:
        summary += f" ({len(report.warnings)} warning(s), see above.)"
    reporter.info(summary)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
