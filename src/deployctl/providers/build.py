"""Opaque build collaborators for the Lambda package and the frontend."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .process import CommandError, run_command

FRONTEND_ENV_FILE = ".env.production"


class BuildError(CommandError):
    """Raised when a build step fails."""


@dataclass(slots=True)
class BuildProvider:
    """Invoke the backend packaging script and the frontend npm build."""

    backend_dir: Path
    frontend_dir: Path
    frontend_out: str = "out"
    uv_bin: str = "uv"
    npm_bin: str = "npm"

    @property
    def frontend_output_dir(self) -> Path:
        """Return the directory holding the exported static site."""
        return self.frontend_dir / self.frontend_out

    def build_backend(self) -> subprocess.CompletedProcess[str]:
        """Build the Lambda deployment package."""
        return self._run([self.uv_bin, "run", "deploy.py"], cwd=self.backend_dir)

    def write_frontend_env(self, values: Mapping[str, str]) -> Path:
        """Write the production env file consumed by the frontend build."""
        path = self.frontend_dir / FRONTEND_ENV_FILE
        lines = [f"{key}={value}" for key, value in values.items()]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def build_frontend(self) -> None:
        """Install dependencies and export the static frontend."""
        self._run([self.npm_bin, "install"], cwd=self.frontend_dir)
        self._run([self.npm_bin, "run", "build"], cwd=self.frontend_dir)

    def _run(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(
            args,
            error_cls=BuildError,
            error_prefix=" ".join(args),
            capture_output=False,
            cwd=cwd,
        )


__all__ = ["BuildError", "BuildProvider", "FRONTEND_ENV_FILE"]
