"""Terraform provider for backend setup, state queries, imports and apply."""
from __future__ import annotations

import json
import logging
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from packaging.version import InvalidVersion, Version

from ..reconcile.models import ImportOutcome
from .process import CommandError, command_output, run_command

LOGGER = logging.getLogger(__name__)

LOCAL_STATE_DIRS = (".terraform", "terraform.tfstate.d")
LOCAL_STATE_FILES = ("terraform.tfstate", "terraform.tfstate.backup")


class TerraformError(CommandError):
    """Raised when a ``terraform`` invocation fails."""


@dataclass(slots=True)
class TerraformProvider:
    """Run ``terraform`` commands inside a working directory."""

    directory: Path
    terraform_bin: str = "terraform"

    def version(self) -> Version:
        """Return the installed Terraform version."""
        result = self._terraform(["version", "-json"])
        try:
            payload = json.loads(result.stdout or "{}")
            raw = str(payload["terraform_version"])
            return Version(raw)
        except (ValueError, KeyError, InvalidVersion) as exc:
            raise TerraformError(f"Unable to parse terraform version output: {exc}") from exc

    def ensure_min_version(self, minimum: str) -> Version:
        """Raise :class:`TerraformError` when Terraform is older than *minimum*."""
        current = self.version()
        if current < Version(minimum):
            raise TerraformError(
                f"Terraform {current} is too old; {minimum} or newer is required "
                "for S3 backend lockfiles."
            )
        return current

    def clean_local_state(self) -> list[Path]:
        """Remove local backend caches and state files; return removed paths."""
        removed: list[Path] = []
        for name in LOCAL_STATE_DIRS:
            path = self.directory / name
            if path.is_dir():
                shutil.rmtree(path)
                removed.append(path)
        for name in LOCAL_STATE_FILES:
            path = self.directory / name
            if path.is_file():
                path.unlink()
                removed.append(path)
        return removed

    def init(self, backend_config: Mapping[str, str]) -> subprocess.CompletedProcess[str]:
        """Initialise the working directory against the remote backend."""
        args = ["init", "-input=false"]
        args.extend(f"-backend-config={key}={value}" for key, value in backend_config.items())
        return self._terraform(args, capture_output=False)

    def list_workspaces(self) -> list[str]:
        """Return the names of existing workspaces."""
        result = self._terraform(["workspace", "list"])
        names: list[str] = []
        for line in (result.stdout or "").splitlines():
            name = line.strip().lstrip("*").strip()
            if name:
                names.append(name)
        return names

    def select_workspace(self, name: str) -> None:
        """Switch to workspace *name*."""
        self._terraform(["workspace", "select", name])

    def ensure_workspace(self, name: str) -> bool:
        """Select workspace *name*, creating it first when missing; return ``True`` if created."""
        if name in self.list_workspaces():
            self.select_workspace(name)
            return False
        self._terraform(["workspace", "new", name])
        return True

    def state_show(self, address: str) -> str | None:
        """Return ``terraform state show`` output, or ``None`` when untracked."""
        result = self._terraform(["state", "show", address], check=False)
        if result.returncode != 0:
            return None
        return result.stdout or ""

    # StateStore protocol
    def is_tracked(self, address: str) -> bool:
        """Return ``True`` when *address* is present in state."""
        return self.state_show(address) is not None

    def import_resource(self, address: str, external_id: str) -> ImportOutcome:
        """Import *external_id* at *address*, reporting failure as an outcome."""
        result = self._terraform(["import", address, external_id], check=False)
        detail = command_output(result)
        if result.returncode != 0:
            LOGGER.debug("terraform import %s exited %s: %s", address, result.returncode, detail)
            return ImportOutcome(ok=False, detail=detail or f"exit {result.returncode}")
        return ImportOutcome(ok=True, detail=detail)

    def apply(
        self,
        variables: Mapping[str, str],
        *,
        var_file: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Apply the configuration non-interactively."""
        args = ["apply"]
        if var_file is not None:
            args.append(f"-var-file={var_file}")
        args.extend(f"-var={key}={value}" for key, value in variables.items())
        args.append("-auto-approve")
        return self._terraform(args, capture_output=False)

    def output(self, name: str, *, optional: bool = False) -> str:
        """Return a raw output value; missing optional outputs yield ``""``."""
        result = self._terraform(["output", "-raw", name], check=not optional)
        if result.returncode != 0:
            return ""
        return (result.stdout or "").strip()

    def _terraform(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.terraform_bin, *args]
        return run_command(
            command,
            error_cls=TerraformError,
            error_prefix=f"{self.terraform_bin} {' '.join(args[:2])}".rstrip(),
            check=check,
            capture_output=capture_output,
            cwd=self.directory,
        )


__all__ = ["LOCAL_STATE_DIRS", "LOCAL_STATE_FILES", "TerraformError", "TerraformProvider"]
