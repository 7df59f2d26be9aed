"""Download remote resources through an external transport tool.

Two transports are supported, probed once at startup in preference order:
``curl`` (fails on HTTP errors and follows redirects) and ``wget``. Both skip
peer certificate verification because the remote sources are internal hosts
serving self-signed certificates. A fetch is a single attempt without retries
or timeouts; a zero-length result is always an error.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import EmptyDownload, FetchError, NoTransportAvailable

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a successful download."""

    source_url: str
    local_path: Path
    size_bytes: int
    transport: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "source_url": self.source_url,
            "local_path": str(self.local_path),
            "size_bytes": self.size_bytes,
            "transport": self.transport,
        }


class Transport(Protocol):
    """Strategy interface for a download tool."""

    name: str

    def is_available(self) -> bool:
        """Return True when the underlying tool is installed."""

    def fetch(self, url: str, dest: Path) -> None:
        """Download *url* into *dest*, raising :class:`FetchError` on failure."""


@dataclass
class _CommandTransport(ABC):
    """Shared plumbing for transports implemented by a command-line tool."""

    name: str
    binary: str
    which: Callable[[str], str | None] = shutil.which

    def is_available(self) -> bool:
        return self.which(self.binary) is not None

    @abstractmethod
    def command(self, url: str, dest: Path) -> list[str]:
        """Return the argument vector downloading *url* into *dest*."""

    def fetch(self, url: str, dest: Path) -> None:
        args = self.command(url, dest)
        LOGGER.debug("fetching %s with %s", url, self.name)
        try:
            result = self._run(args)
        except FileNotFoundError as exc:
            raise NoTransportAvailable(f"{self.binary} disappeared before use: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise FetchError(
                f"{self.name} could not download {url} (exit {result.returncode}): {message}"
            )

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603 - arguments are built from configuration
            list(args),
            capture_output=True,
            text=True,
            check=False,
        )


@dataclass
class CurlTransport(_CommandTransport):
    """``curl -fsSLk``: fail on HTTP errors, follow redirects, stay quiet."""

    name: str = "curl"
    binary: str = "curl"

    def command(self, url: str, dest: Path) -> list[str]:
        return [self.binary, "-fsSLk", url, "-o", str(dest)]


@dataclass
class WgetTransport(_CommandTransport):
    """``wget -q --no-check-certificate``."""

    name: str = "wget"
    binary: str = "wget"

    def command(self, url: str, dest: Path) -> list[str]:
        return [self.binary, "-q", "--no-check-certificate", url, "-O", str(dest)]


TRANSPORTS: dict[str, type[_CommandTransport]] = {
    "curl": CurlTransport,
    "wget": WgetTransport,
}


def select_transport(
    preference: Sequence[str] = ("curl", "wget"),
    *,
    which: Callable[[str], str | None] = shutil.which,
) -> Transport:
    """Return the first available transport from *preference*."""
    for name in preference:
        factory = TRANSPORTS.get(name)
        if factory is None:
            raise ValueError(f"Unknown transport {name!r}.")
        transport = factory(which=which)
        if transport.is_available():
            return transport
    joined = " nor ".join(preference)
    raise NoTransportAvailable(f"Neither {joined} found for downloading.")


class Fetcher:
    """Download resources with a transport chosen once at construction."""

    def __init__(self, transport: Transport) -> None:
        """Bind the fetcher to *transport*."""
        self.transport = transport

    @classmethod
    def probe(
        cls,
        preference: Sequence[str] = ("curl", "wget"),
        *,
        which: Callable[[str], str | None] = shutil.which,
    ) -> Fetcher:
        """Build a fetcher using the first installed transport."""
        return cls(select_transport(preference, which=which))

    def fetch(self, url: str, dest: Path) -> FetchResult:
        """Download *url* to *dest*, overwriting it, and validate the size."""
        self.transport.fetch(url, dest)
        try:
            size = dest.stat().st_size
        except FileNotFoundError:
            size = 0
        if size <= 0:
            raise EmptyDownload(f"Downloaded file is empty: {dest}")
        return FetchResult(
            source_url=url,
            local_path=dest,
            size_bytes=size,
            transport=self.transport.name,
        )

    @contextmanager
    def temporary(self, url: str, *, prefix: str, suffix: str = "") -> Iterator[FetchResult]:
        """Download *url* to a fresh temporary file removed on exit."""
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix)
        os.close(fd)
        path = Path(name)
        try:
            yield self.fetch(url, path)
        finally:
            path.unlink(missing_ok=True)


__all__ = [
    "CurlTransport",
    "FetchResult",
    "Fetcher",
    "Transport",
    "WgetTransport",
    "select_transport",
]
