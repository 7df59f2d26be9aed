"""Structured operation logging for tenantctl.

Each provisioning run is recorded as one JSON object per line in
``<logs_dir>/operations.jsonl``. The record lists every stage step, the
warnings that were tolerated, the backups that were taken and the final
status. Logging must never break a run: when the log directory cannot be
created or written the logger disables itself and carries on silently.
"""
from __future__ import annotations

import json
import os
import secrets
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import cast


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Accumulates steps and the final result for one logged operation."""

    name: str
    args: dict[str, object]
    target: dict[str, object]
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    operation_id: str = field(default_factory=lambda: secrets.token_hex(6))
    started_at: str = field(default_factory=_now_iso)

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a named step with its *status* and optional *detail*."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, backups=backups, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[object] | None = None,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with tolerated warnings."""
        self._finish("warning", message, warnings=warnings, backups=backups, context=context)

    def error(
        self,
        message: str,
        *,
        rc: int | None = None,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed with exit status *rc*."""
        self._finish(
            "error",
            message,
            errors=[message],
            rc=rc,
            backups=backups,
            context=context,
        )

    @property
    def finished(self) -> bool:
        """Return True once a result has been recorded."""
        return self.result is not None

    def _finish(
        self,
        status: str,
        message: str,
        *,
        warnings: Iterable[object] | None = None,
        errors: Iterable[object] | None = None,
        rc: int | None = None,
        backups: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if warnings is not None:
            result["warnings"] = [str(item) for item in warnings]
        if errors is not None:
            result["errors"] = [str(item) for item in errors]
        if rc is not None:
            result["rc"] = rc
        if backups is not None:
            result["backups"] = [str(item) for item in backups]
        if context:
            result["context"] = _sanitize(context)
        self.result = result


class StructuredLogger:
    """Append operation records to a JSON-lines file."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; disable logging when it cannot be created."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / "operations.jsonl"
        self._enabled = True
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def operations_log(self) -> Path:
        """Return the path of the JSON-lines operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit.

        An exception escaping the block is recorded as an error result (unless
        the scope already holds one) and then re-raised.
        """
        scope = OperationScope(
            name=name,
            args=cast(dict[str, object], _sanitize(dict(args or {}))),
            target=cast(dict[str, object], _sanitize(dict(target or {}))),
        )
        started = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if not scope.finished:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if not scope.finished:
                scope.success("Operation completed.")
            duration_ms = int((time.monotonic() - started) * 1000)
            self._write(scope, duration_ms)

    def _write(self, scope: OperationScope, duration_ms: int) -> None:
        if not self._enabled:
            return
        record = {
            "id": scope.operation_id,
            "timestamp": scope.started_at,
            "operation": scope.name,
            "pid": os.getpid(),
            "args": scope.args,
            "target": scope.target,
            "steps": scope.steps,
            "result": scope.result,
            "duration_ms": duration_ms,
        }
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
