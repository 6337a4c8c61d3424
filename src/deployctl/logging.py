"""Structured operation logging for deployctl.

Every CLI command runs inside an :class:`OperationScope`. When the scope
closes, a single JSON line describing the operation (arguments, target, steps
and result) is appended to ``operations.jsonl`` in the configured logs
directory. Logging must never break a deployment, so filesystem failures
disable the logger instead of propagating.
"""
from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def sanitize_payload(value: object) -> object:
    """Return *value* with anything JSON cannot encode converted to ``str``."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [sanitize_payload(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for a single operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope for *command*."""
        self._logger = logger
        self.op_id = uuid.uuid4().hex
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.started_at = _now()
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status, "at": _now()}
        if detail is not None:
            step["detail"] = sanitize_payload(detail)
        self.steps.append(step)
        LOGGER.debug("%s: step %s -> %s", self.command, name, status)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, rc=0, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            rc=0,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
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
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        rc: int,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message, "rc": rc}
        if changed is not None:
            result["changed"] = changed
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if context:
            result["context"] = sanitize_payload(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable record for this operation."""
        return {
            "op_id": self.op_id,
            "command": self.command,
            "args": sanitize_payload(self.args),
            "target": sanitize_payload(self.target),
            "started_at": self.started_at,
            "finished_at": _now(),
            "steps": self.steps,
            "result": self.result,
        }


class StructuredLogger:
    """Append-only JSONL logger for CLI operations."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*; disable logging when it cannot be created."""
        self.logs_dir = Path(logs_dir)
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Structured logging disabled; cannot create %s: %s", self.logs_dir, exc)
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(self, command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                rc = getattr(exc, "exit_code", None)
                if isinstance(rc, int) and rc == 0:
                    scope.success("Operation exited early.")
                else:
                    scope.error(
                        f"Operation aborted: {exc!r}",
                        rc=rc if isinstance(rc, int) else 1,
                    )
            raise
        finally:
            if scope.result is None:
                scope.success("Operation completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        line = json.dumps(record, sort_keys=True)
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            LOGGER.warning("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger", "sanitize_payload"]
