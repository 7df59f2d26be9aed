"""Colourised, human-readable status lines for operators."""
from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape

_PREFIXES = {
    "info": "[bold blue]\\[INFO][/bold blue]",
    "warn": "[bold yellow]\\[WARN][/bold yellow]",
    "error": "[bold red]\\[ERR ][/bold red]",
}


@dataclass
class StatusReporter:
    """Print ``[INFO]``/``[WARN]``/``[ERR ]`` prefixed lines.

    Errors go to a separate console so they can be routed to stderr.
    """

    console: Console = field(default_factory=Console)
    error_console: Console = field(default_factory=lambda: Console(stderr=True))

    def info(self, message: str) -> None:
        """Announce an action or report progress."""
        self.console.print(f"{_PREFIXES['info']} {escape(message)}")

    def warn(self, message: str) -> None:
        """Report a tolerated problem."""
        self.console.print(f"{_PREFIXES['warn']} {escape(message)}")

    def error(self, message: str) -> None:
        """Report a fatal problem."""
        self.error_console.print(f"{_PREFIXES['error']} {escape(message)}")


__all__ = ["StatusReporter"]
