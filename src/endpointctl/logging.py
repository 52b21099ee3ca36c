"""Structured operations logging for endpointctl.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects steps and a final result and, on exit, appends one JSON record to
``operations.jsonl`` plus a single human-readable line to ``endpointctl.log``.

Logging is best effort: when the log directory cannot be created or a write
fails the logger disables itself and commands continue unaffected.
"""
from __future__ import annotations

import getpass
import json
import os
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from . import __version__

OPERATIONS_LOG_NAME = "operations.jsonl"
HUMAN_LOG_NAME = "endpointctl.log"


def sanitize_payload(value: object) -> object:
    """Convert *value* into JSON-safe primitives."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [sanitize_payload(item) for item in value]
    return str(value)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):  # pragma: no cover - depends on host
        return "unknown"


class OperationScope:
    """Collects steps and the final outcome of one logged operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise an empty scope for *command*."""
        self._logger = logger
        self.command = command
        self.operation_id = uuid.uuid4().hex
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, Any]] = []
        self.result: dict[str, Any] | None = None
        self._started = time.perf_counter()
        self._started_at = _now_iso()

    def add_step(
        self,
        name: str,
        *,
        status: str = "success",
        detail: object | None = None,
    ) -> None:
        """Record an intermediate step."""
        step: dict[str, Any] = {"name": name, "status": status, "timestamp": _now_iso()}
        if detail is not None:
            step["detail"] = sanitize_payload(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            errors=None,
            rc=0,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            rc=0,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        warnings: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            changed=changed,
            warnings=warnings,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Sequence[str] | None,
        errors: Sequence[str] | None,
        rc: int,
        context: Mapping[str, object] | None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "rc": rc,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "context": sanitize_payload(dict(context or {})),
        }

    def to_record(self) -> dict[str, Any]:
        """Return the JSON record describing this operation."""
        duration_ms = int((time.perf_counter() - self._started) * 1000)
        return {
            "timestamp": self._started_at,
            "operation_id": self.operation_id,
            "command": self.command,
            "args": sanitize_payload(self.args),
            "target": sanitize_payload(self.target),
            "steps": list(self.steps),
            "result": self.result,
            "duration_ms": duration_ms,
            "context": {
                "endpointctl_version": __version__,
                "user": _current_user(),
                "pid": os.getpid(),
            },
        }


class StructuredLogger:
    """Append-only JSONL operations log with a human-readable companion."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare the log directory, disabling logging if it is unusable."""
        self.log_dir = Path(log_dir).expanduser()
        self._operations_log_path = self.log_dir / OPERATIONS_LOG_NAME
        self._human_log_path = self.log_dir / HUMAN_LOG_NAME
        self._enabled = True
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return ``True`` while log writes are still being attempted."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it when the block exits."""
        scope = OperationScope(self, command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}", errors=[repr(exc)], rc=1)
            raise
        finally:
            if scope.result is None:
                scope.success("Operation completed.")
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        result = record["result"] or {}
        human_line = (
            f"{record['timestamp']} {str(result.get('status', 'unknown')).upper()} "
            f"{scope.command}: {result.get('message', '')}\n"
        )
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(human_line)
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger", "sanitize_payload"]
