"""Tests for the Terraform provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from deployctl.providers.terraform import TerraformError, TerraformProvider


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class Recorder:
    """Capture subprocess invocations and replay canned results."""

    def __init__(self, results: dict[tuple[str, ...], DummyResult] | None = None) -> None:
        self.results = results or {}
        self.calls: list[list[str]] = []
        self.kwargs: list[dict[str, Any]] = []

    def __call__(self, args: Sequence[str], **kwargs: Any) -> DummyResult:
        self.calls.append(list(args))
        self.kwargs.append(kwargs)
        for prefix, result in self.results.items():
            if tuple(args[: len(prefix)]) == prefix:
                return result
        return DummyResult()


@pytest.fixture
def provider(tmp_path: Path) -> TerraformProvider:
    """Return a provider rooted at a temporary working directory."""
    return TerraformProvider(directory=tmp_path)


def test_clean_local_state_removes_caches(provider: TerraformProvider) -> None:
    """Local backend caches and state files are removed, others kept."""
    root = provider.directory
    (root / ".terraform" / "providers").mkdir(parents=True)
    (root / "terraform.tfstate.d" / "dev").mkdir(parents=True)
    (root / "terraform.tfstate").write_text("{}", encoding="utf-8")
    (root / "terraform.tfstate.backup").write_text("{}", encoding="utf-8")
    (root / "main.tf").write_text("", encoding="utf-8")

    removed = provider.clean_local_state()

    assert {path.name for path in removed} == {
        ".terraform",
        "terraform.tfstate.d",
        "terraform.tfstate",
        "terraform.tfstate.backup",
    }
    assert (root / "main.tf").exists()
    assert not (root / ".terraform").exists()
    assert provider.clean_local_state() == []


def test_init_passes_backend_config(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """Backend settings become -backend-config flags run in the working dir."""
    recorder = Recorder()
    monkeypatch.setattr(subprocess, "run", recorder)

    provider.init({"bucket": "twin-terraform-state-123", "key": "dev/terraform.tfstate"})

    assert recorder.calls == [
        [
            "terraform",
            "init",
            "-input=false",
            "-backend-config=bucket=twin-terraform-state-123",
            "-backend-config=key=dev/terraform.tfstate",
        ]
    ]
    assert recorder.kwargs[0]["cwd"] == str(provider.directory)


def test_ensure_workspace_selects_existing(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """An existing workspace is selected rather than created."""
    recorder = Recorder(
        {("terraform", "workspace", "list"): DummyResult(stdout="  default\n* dev\n  prod\n")}
    )
    monkeypatch.setattr(subprocess, "run", recorder)

    created = provider.ensure_workspace("dev")

    assert created is False
    assert recorder.calls[-1] == ["terraform", "workspace", "select", "dev"]


def test_ensure_workspace_creates_missing(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """Workspace names are matched exactly, so ``test`` is created next to ``test2``."""
    recorder = Recorder(
        {("terraform", "workspace", "list"): DummyResult(stdout="* default\n  test2\n")}
    )
    monkeypatch.setattr(subprocess, "run", recorder)

    created = provider.ensure_workspace("test")

    assert created is True
    assert recorder.calls[-1] == ["terraform", "workspace", "new", "test"]


def test_is_tracked_treats_unknown_address_as_false(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """``state show`` failures never raise and report untracked."""
    recorder = Recorder(
        {
            ("terraform", "state", "show", "aws_iam_role.lambda_role"): DummyResult(
                returncode=1, stderr="No instance found for the given address!"
            )
        }
    )
    monkeypatch.setattr(subprocess, "run", recorder)

    assert provider.is_tracked("aws_iam_role.lambda_role") is False
    assert provider.state_show("aws_iam_role.lambda_role") is None


def test_state_show_returns_output(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """Tracked resources return their rendered state."""
    monkeypatch.setattr(
        subprocess,
        "run",
        Recorder({("terraform", "state"): DummyResult(stdout='resource "aws_iam_role" {}\n')}),
    )

    assert provider.is_tracked("aws_iam_role.lambda_role") is True
    assert provider.state_show("aws_iam_role.lambda_role") == 'resource "aws_iam_role" {}\n'


def test_import_resource_reports_outcome(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """Import failures are returned as outcomes carrying the tool's message."""
    recorder = Recorder(
        {
            ("terraform", "import", "aws_iam_role_policy_attachment.lambda_s3"): DummyResult(
                returncode=1, stderr="Error: Resource already managed by Terraform\n"
            ),
        }
    )
    monkeypatch.setattr(subprocess, "run", recorder)

    ok = provider.import_resource("aws_iam_role.lambda_role", "twin-dev-lambda-role")
    failed = provider.import_resource(
        "aws_iam_role_policy_attachment.lambda_s3",
        "twin-dev-lambda-role/arn:aws:iam::aws:policy/AmazonS3FullAccess",
    )

    assert ok.ok is True
    assert failed.ok is False
    assert failed.detail == "Error: Resource already managed by Terraform"
    assert recorder.calls[0] == [
        "terraform",
        "import",
        "aws_iam_role.lambda_role",
        "twin-dev-lambda-role",
    ]


def test_apply_with_var_file(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """Production applies pass the var file ahead of the variables."""
    recorder = Recorder()
    monkeypatch.setattr(subprocess, "run", recorder)

    provider.apply({"project_name": "twin", "environment": "prod"}, var_file="prod.tfvars")

    assert recorder.calls == [
        [
            "terraform",
            "apply",
            "-var-file=prod.tfvars",
            "-var=project_name=twin",
            "-var=environment=prod",
            "-auto-approve",
        ]
    ]


def test_apply_failure_raises(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """A failing apply raises TerraformError with the exit code."""
    monkeypatch.setattr(subprocess, "run", Recorder({("terraform",): DummyResult(returncode=1)}))

    with pytest.raises(TerraformError) as excinfo:
        provider.apply({"environment": "dev"})

    assert excinfo.value.returncode == 1
    assert "terraform apply" in str(excinfo.value)


def test_output_optional_missing_returns_empty(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """Missing optional outputs yield an empty string; required ones raise."""
    monkeypatch.setattr(
        subprocess,
        "run",
        Recorder(
            {
                ("terraform", "output", "-raw", "custom_domain_url"): DummyResult(
                    returncode=1, stderr="Output not found"
                ),
                ("terraform", "output", "-raw", "api_gateway_url"): DummyResult(
                    stdout="https://abc.execute-api.us-east-1.amazonaws.com\n"
                ),
                ("terraform", "output", "-raw", "s3_frontend_bucket"): DummyResult(
                    returncode=1, stderr="Output not found"
                ),
            }
        ),
    )

    assert provider.output("custom_domain_url", optional=True) == ""
    assert provider.output("api_gateway_url") == "https://abc.execute-api.us-east-1.amazonaws.com"
    with pytest.raises(TerraformError):
        provider.output("s3_frontend_bucket")


@pytest.mark.parametrize(
    ("raw", "minimum", "ok"),
    [("1.10.2", "1.10.0", True), ("1.9.8", "1.10.0", False)],
)
def test_ensure_min_version(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
    raw: str,
    minimum: str,
    ok: bool,
) -> None:
    """Terraform versions are compared semantically, not lexically."""
    monkeypatch.setattr(
        subprocess,
        "run",
        Recorder(
            {("terraform", "version"): DummyResult(stdout=f'{{"terraform_version": "{raw}"}}')}
        ),
    )

    if ok:
        assert str(provider.ensure_min_version(minimum)) == raw
    else:
        with pytest.raises(TerraformError, match="too old"):
            provider.ensure_min_version(minimum)


def test_missing_binary_raises(
    monkeypatch: pytest.MonkeyPatch,
    provider: TerraformProvider,
) -> None:
    """A missing terraform binary surfaces as TerraformError."""

    def fail(*_args: object, **_kwargs: object) -> DummyResult:
        raise FileNotFoundError("terraform")

    monkeypatch.setattr(subprocess, "run", fail)

    with pytest.raises(TerraformError, match="not found"):
        provider.import_resource("aws_iam_role.lambda_role", "role")
