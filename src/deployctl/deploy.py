"""Deployment pipeline wrapped around the Lambda role reconciliation.

The build, apply and sync steps are opaque collaborators; their outputs (the
API URL, bucket names) are passed through to the final report untouched.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import AppConfig
from .logging import OperationScope
from .providers import AwsProvider, BuildProvider, TerraformProvider
from .reconcile import (
    AttachmentSpec,
    ReconcileResult,
    Reconciler,
    ResourceIdentity,
)

LOGGER = logging.getLogger(__name__)

StepCallback = Callable[[str, str, object], None]


class DeploymentError(RuntimeError):
    """Raised when a deployment step cannot continue."""

    def __init__(self, message: str, *, step: str) -> None:
        """Record the failing *step* alongside the message."""
        super().__init__(message)
        self.step = step


@dataclass(slots=True, frozen=True)
class DeploymentOutputs:
    """Terraform outputs surfaced to the operator."""

    api_url: str
    frontend_bucket: str
    cloudfront_url: str
    custom_url: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "api_gateway_url": self.api_url,
            "s3_frontend_bucket": self.frontend_bucket,
            "cloudfront_url": self.cloudfront_url,
            "custom_domain_url": self.custom_url or None,
        }


@dataclass(slots=True)
class DeploymentResult:
    """Outcome of a full deployment run."""

    environment: str
    project: str
    account_id: str | None = None
    reconcile: ReconcileResult | None = None
    outputs: DeploymentOutputs | None = None
    steps: list[str] = field(default_factory=list)


def lambda_role_identity(config: AppConfig) -> ResourceIdentity:
    """Return the Lambda execution role identity for *config*."""
    return ResourceIdentity(name=config.role_name, address=config.iam_role.address)


def lambda_role_attachments(config: AppConfig) -> tuple[AttachmentSpec, ...]:
    """Return the managed-policy attachments reconciled after the role."""
    return tuple(
        AttachmentSpec(address=attachment.address, target=attachment.policy_arn)
        for attachment in config.iam_role.attachments
    )


def backend_config(config: AppConfig, account_id: str) -> dict[str, str]:
    """Return the S3 backend settings passed to ``terraform init``."""
    return {
        "bucket": config.terraform.backend_bucket(account_id),
        "key": f"{config.environment}/terraform.tfstate",
        "region": config.aws.region,
        "use_lockfile": "true",
        "encrypt": "true",
    }


def apply_variables(config: AppConfig) -> dict[str, str]:
    """Return the ``-var`` values for ``terraform apply``."""
    return {"project_name": config.project_name, "environment": config.environment}


@dataclass(slots=True)
class Deployment:
    """Sequence the deployment steps for one environment."""

    config: AppConfig
    aws: AwsProvider
    terraform: TerraformProvider
    build: BuildProvider
    on_step: StepCallback | None = None

    @classmethod
    def from_config(cls, config: AppConfig, on_step: StepCallback | None = None) -> Deployment:
        """Build the providers described by *config*."""
        return cls(
            config=config,
            aws=AwsProvider(region=config.aws.region, aws_bin=config.aws.aws_bin),
            terraform=TerraformProvider(
                directory=config.terraform.directory,
                terraform_bin=config.terraform.terraform_bin,
            ),
            build=BuildProvider(
                backend_dir=config.build.backend_dir,
                frontend_dir=config.build.frontend_dir,
                frontend_out=config.build.frontend_out,
                uv_bin=config.build.uv_bin,
                npm_bin=config.build.npm_bin,
            ),
            on_step=on_step,
        )

    @classmethod
    def for_operation(cls, config: AppConfig, op: OperationScope) -> Deployment:
        """Build a deployment whose steps are recorded on *op*."""

        def record(name: str, status: str, detail: object) -> None:
            op.add_step(name, status=status, detail=detail)

        return cls.from_config(config, on_step=record)

    @property
    def var_file(self) -> str | None:
        """Return the tfvars file used for this environment."""
        return self.config.terraform.prod_var_file if self.config.is_production else None

    def plan(self, *, skip_build: bool = False, skip_frontend: bool = False) -> list[str]:
        """Describe the steps :meth:`run` would perform."""
        config = self.config
        steps: list[str] = []
        if not skip_build:
            steps.append(f"build-backend: {config.build.uv_bin} run deploy.py")
        steps.append(
            f"terraform-init: bucket {config.terraform.backend_bucket('<account>')}, "
            f"workspace {config.environment}"
        )
        steps.append(
            f"reconcile: {config.role_name} -> {config.iam_role.address} "
            f"(+{len(config.iam_role.attachments)} attachments)"
        )
        var_file = f" with {self.var_file}" if self.var_file else ""
        steps.append(f"terraform-apply{var_file}")
        if not skip_frontend:
            steps.append("build-frontend: npm install && npm run build")
            steps.append(f"sync-frontend: {config.build.frontend_out}/ -> s3://<bucket>/")
        return steps

    def resolve_account_id(self) -> str:
        """Return the configured account id or ask AWS for the caller's."""
        return self.config.aws.account_id or self.aws.caller_account_id()

    def prepare_terraform(self, *, create_workspace: bool = True) -> str:
        """Clean local state, initialise the backend and select the workspace."""
        self.terraform.ensure_min_version(self.config.terraform.min_version)
        account_id = self.resolve_account_id()
        removed = self.terraform.clean_local_state()
        if removed:
            LOGGER.info("Removed local Terraform state: %s", ", ".join(map(str, removed)))
        self.terraform.init(backend_config(self.config, account_id))
        environment = self.config.environment
        if create_workspace:
            created = self.terraform.ensure_workspace(environment)
        else:
            self.terraform.select_workspace(environment)
            created = False
        self._step(
            "terraform-init",
            "success",
            {"account_id": account_id, "workspace": environment, "created": created},
        )
        return account_id

    def reconcile_role(self) -> ReconcileResult:
        """Import the Lambda role and its policy attachments when untracked."""
        reconciler = Reconciler(self.aws, self.terraform)
        result = reconciler.reconcile(
            lambda_role_identity(self.config),
            lambda_role_attachments(self.config),
        )
        status = "error" if result.is_fatal else ("warning" if result.warnings else "success")
        self._step(
            "reconcile",
            status,
            {"parent": result.parent_status.value, "warnings": result.warnings},
        )
        return result

    def collect_outputs(self) -> DeploymentOutputs:
        """Read the Terraform outputs reported to the operator."""
        return DeploymentOutputs(
            api_url=self.terraform.output("api_gateway_url"),
            frontend_bucket=self.terraform.output("s3_frontend_bucket"),
            cloudfront_url=self.terraform.output("cloudfront_url", optional=True),
            custom_url=self.terraform.output("custom_domain_url", optional=True),
        )

    def run(self, *, skip_build: bool = False, skip_frontend: bool = False) -> DeploymentResult:
        """Execute the full deployment."""
        config = self.config
        result = DeploymentResult(environment=config.environment, project=config.project_name)

        if skip_build:
            self._step("build-backend", "skipped", None)
        else:
            self.build.build_backend()
            self._step("build-backend", "success", None)
        result.steps.append("build-backend")

        result.account_id = self.prepare_terraform()
        result.steps.append("terraform-init")

        result.reconcile = self.reconcile_role()
        result.steps.append("reconcile")
        if result.reconcile.is_fatal:
            raise DeploymentError(
                f"Failed to import IAM role {config.role_name}: {result.reconcile.detail}",
                step="reconcile",
            )

        self.terraform.apply(apply_variables(config), var_file=self.var_file)
        self._step("terraform-apply", "success", {"var_file": self.var_file})
        result.steps.append("terraform-apply")

        result.outputs = self.collect_outputs()
        self._step("outputs", "success", result.outputs.to_dict())

        if skip_frontend:
            self._step("sync-frontend", "skipped", None)
        else:
            self.build.write_frontend_env({"NEXT_PUBLIC_API_URL": result.outputs.api_url})
            self.build.build_frontend()
            self._step("build-frontend", "success", None)
            self.aws.s3_sync(self.build.frontend_output_dir, result.outputs.frontend_bucket)
            self._step("sync-frontend", "success", {"bucket": result.outputs.frontend_bucket})
            result.steps.extend(["build-frontend", "sync-frontend"])

        return result

    def _step(self, name: str, status: str, detail: object) -> None:
        LOGGER.debug("step %s: %s", name, status)
        if self.on_step is not None:
            self.on_step(name, status, detail)


__all__ = [
    "Deployment",
    "DeploymentError",
    "DeploymentOutputs",
    "DeploymentResult",
    "apply_variables",
    "backend_config",
    "lambda_role_attachments",
    "lambda_role_identity",
]
