"""Shared subprocess helper for provider command wrappers."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Base class for failures raised by provider commands."""

    def __init__(
        self,
        message: str,
        *,
        args: Sequence[str] = (),
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        """Record the failing command alongside the message."""
        super().__init__(message)
        self.command = list(args)
        self.returncode = returncode
        self.output = output


def command_output(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful trimmed output of *result*."""
    stdout = getattr(result, "stdout", "") or ""
    stderr = getattr(result, "stderr", "") or ""
    return stderr.strip() or stdout.strip()


def run_command(
    args: Sequence[str],
    *,
    error_cls: type[CommandError],
    error_prefix: str,
    check: bool = True,
    capture_output: bool = True,
    cwd: Path | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* synchronously, raising *error_cls* on failure when *check*."""
    LOGGER.debug("exec: %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(  # noqa: S603
            list(args),
            capture_output=capture_output,
            text=True,
            check=False,
            cwd=str(cwd) if cwd is not None else None,
        )
    except FileNotFoundError as exc:
        raise error_cls(f"{args[0]} not found: {exc}", args=args) from exc
    if check and result.returncode != 0:
        message = command_output(result) or "no output"
        raise error_cls(
            f"{error_prefix} failed (exit {result.returncode}): {message}",
            args=args,
            returncode=result.returncode,
            output=message,
        )
    return result


__all__ = ["CommandError", "command_output", "run_command"]
