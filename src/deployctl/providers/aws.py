"""AWS CLI provider used for identity lookups and static asset sync."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .process import CommandError, command_output, run_command

NO_SUCH_ENTITY = "NoSuchEntity"


class AwsError(CommandError):
    """Raised when an ``aws`` CLI invocation fails."""


@dataclass(slots=True)
class AwsProvider:
    """Thin wrapper over the ``aws`` CLI."""

    region: str = "us-east-1"
    aws_bin: str = "aws"

    def caller_account_id(self) -> str:
        """Return the account id of the active credentials."""
        result = self._aws(
            ["sts", "get-caller-identity", "--query", "Account", "--output", "text"],
        )
        account = (result.stdout or "").strip()
        if not account or account == "None":
            raise AwsError("aws sts get-caller-identity returned no account id.")
        return account

    def role_exists(self, role_name: str) -> bool:
        """Return ``True`` when the IAM role *role_name* exists.

        Only a ``NoSuchEntity`` response means absent. Any other failure,
        such as expired credentials, raises :class:`AwsError`.
        """
        args = ["iam", "get-role", "--role-name", role_name]
        result = self._aws(args, check=False)
        if result.returncode == 0:
            return True
        detail = command_output(result)
        if NO_SUCH_ENTITY in detail:
            return False
        message = detail or "no output"
        raise AwsError(
            f"{self.aws_bin} iam get-role failed (exit {result.returncode}): {message}",
            args=[self.aws_bin, *args, "--region", self.region],
            returncode=result.returncode,
            output=detail,
        )

    # IdentityLookup protocol
    def exists(self, name: str) -> bool:
        """Alias of :meth:`role_exists` for the reconciler."""
        return self.role_exists(name)

    def s3_sync(
        self,
        source: Path,
        bucket: str,
        *,
        delete: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Mirror *source* into ``s3://bucket/``."""
        args = ["s3", "sync", str(source), f"s3://{bucket}/"]
        if delete:
            args.append("--delete")
        return self._aws(args, capture_output=False)

    def _aws(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.aws_bin, *args, "--region", self.region]
        return run_command(
            command,
            error_cls=AwsError,
            error_prefix=f"{self.aws_bin} {' '.join(args[:2])}",
            check=check,
            capture_output=capture_output,
        )


__all__ = ["AwsError", "AwsProvider"]
