"""Configuration loader for deployctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``./deployctl.yml`` (or an override path).
3. Environment variables prefixed with ``DEPLOYCTL_``.
4. Explicit overrides supplied programmatically (the CLI's positional
   ``environment`` and ``project`` arguments land here).

Environment keys use double underscores to express nesting, e.g.::

    export DEPLOYCTL_AWS__REGION=eu-west-1
    export DEPLOYCTL_TERRAFORM__STATE_BUCKET_PREFIX=acme-terraform-state

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally; ``DEPLOYCTL_AWS__ACCOUNT_ID`` is kept verbatim. The resulting
configuration is exposed as immutable ``dataclasses`` and passed explicitly
into the reconciler and deployment pipeline instead of being read from global
shell state.
"""
from __future__ import annotations

import os
import re
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "DEPLOYCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
REGION_FALLBACK_ENV_VAR = "DEFAULT_AWS_REGION"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
# Env values kept verbatim; YAML would read leading-zero digits as octal ints.
STRING_ENV_PATHS = {("aws", "account_id")}
ACCOUNT_ID_PATTERN = re.compile(r"\d{12}")

ALLOWED_ENVIRONMENTS = ("dev", "test", "prod")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AwsConfig:
    """AWS CLI integration values."""

    region: str = "us-east-1"
    account_id: str | None = None
    aws_bin: str = "aws"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "region": self.region,
            "account_id": self.account_id,
            "aws_bin": self.aws_bin,
        }


@dataclass(frozen=True)
class TerraformConfig:
    """Terraform working directory and backend settings."""

    directory: Path
    terraform_bin: str = "terraform"
    state_bucket_prefix: str = "twin-terraform-state"
    prod_var_file: str = "prod.tfvars"
    min_version: str = "1.10.0"

    def backend_bucket(self, account_id: str) -> str:
        """Return the S3 state bucket name for *account_id*."""
        return f"{self.state_bucket_prefix}-{account_id}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "directory": str(self.directory),
            "terraform_bin": self.terraform_bin,
            "state_bucket_prefix": self.state_bucket_prefix,
            "prod_var_file": self.prod_var_file,
            "min_version": self.min_version,
        }


@dataclass(frozen=True)
class BuildConfig:
    """Backend/frontend build collaborators."""

    backend_dir: Path
    frontend_dir: Path
    frontend_out: str = "out"
    uv_bin: str = "uv"
    npm_bin: str = "npm"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "backend_dir": str(self.backend_dir),
            "frontend_dir": str(self.frontend_dir),
            "frontend_out": self.frontend_out,
            "uv_bin": self.uv_bin,
            "npm_bin": self.npm_bin,
        }


@dataclass(frozen=True)
class PolicyAttachmentConfig:
    """A managed policy attached to the Lambda role."""

    address: str
    policy_arn: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"address": self.address, "policy_arn": self.policy_arn}


DEFAULT_ATTACHMENTS: tuple[PolicyAttachmentConfig, ...] = (
    PolicyAttachmentConfig(
        address="aws_iam_role_policy_attachment.lambda_basic",
        policy_arn="arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole",
    ),
    PolicyAttachmentConfig(
        address="aws_iam_role_policy_attachment.lambda_bedrock",
        policy_arn="arn:aws:iam::aws:policy/AmazonBedrockFullAccess",
    ),
    PolicyAttachmentConfig(
        address="aws_iam_role_policy_attachment.lambda_s3",
        policy_arn="arn:aws:iam::aws:policy/AmazonS3FullAccess",
    ),
)


@dataclass(frozen=True)
class IamRoleConfig:
    """The Lambda execution role reconciled before every apply."""

    name_template: str = "{project}-{environment}-lambda-role"
    address: str = "aws_iam_role.lambda_role"
    attachments: tuple[PolicyAttachmentConfig, ...] = DEFAULT_ATTACHMENTS

    def role_name(self, project: str, environment: str) -> str:
        """Render the role name for *project* and *environment*."""
        return self.name_template.format(project=project, environment=environment)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name_template": self.name_template,
            "address": self.address,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for deployctl."""

    config_file: Path
    environment: str
    project_name: str
    project_root: Path
    logs_dir: Path
    aws: AwsConfig
    terraform: TerraformConfig
    build: BuildConfig
    iam_role: IamRoleConfig

    @property
    def is_production(self) -> bool:
        """Return ``True`` when deploying the ``prod`` environment."""
        return self.environment == "prod"

    @property
    def role_name(self) -> str:
        """Return the Lambda role name for this deployment."""
        return self.iam_role.role_name(self.project_name, self.environment)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "environment": self.environment,
            "project_name": self.project_name,
            "project_root": str(self.project_root),
            "logs_dir": str(self.logs_dir),
            "aws": self.aws.to_dict(),
            "terraform": self.terraform.to_dict(),
            "build": self.build.to_dict(),
            "iam_role": self.iam_role.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "deployctl.yml",
    "environment": "dev",
    "project_name": "twin",
    "project_root": ".",
    "logs_dir": None,  # derived from project_root when absent
    "aws": {
        "region": None,  # DEFAULT_AWS_REGION, then us-east-1
        "account_id": None,
        "aws_bin": "aws",
    },
    "terraform": {
        "directory": "terraform",
        "terraform_bin": "terraform",
        "state_bucket_prefix": "twin-terraform-state",
        "prod_var_file": "prod.tfvars",
        "min_version": "1.10.0",
    },
    "build": {
        "backend_dir": "backend",
        "frontend_dir": "frontend",
        "frontend_out": "out",
        "uv_bin": "uv",
        "npm_bin": "npm",
    },
    "iam_role": {
        "name_template": "{project}-{environment}-lambda-role",
        "address": "aws_iam_role.lambda_role",
        "attachments": None,  # DEFAULT_ATTACHMENTS when absent
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "aws": {"region", "account_id", "aws_bin"},
    "terraform": {
        "directory",
        "terraform_bin",
        "state_bucket_prefix",
        "prod_var_file",
        "min_version",
    },
    "build": {"backend_dir", "frontend_dir", "frontend_out", "uv_bin", "npm_bin"},
    "iam_role": {"name_template", "address", "attachments"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged, resolved_env)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    environment = str(raw.get("environment"))
    if environment not in ALLOWED_ENVIRONMENTS:
        allowed_envs = ", ".join(ALLOWED_ENVIRONMENTS)
        raise ConfigError(f"Unsupported environment '{environment}'. Allowed: {allowed_envs}.")

    project_name = raw.get("project_name")
    if not isinstance(project_name, str) or not project_name.strip():
        raise ConfigError("project_name must be a non-empty string.")

    account_id = _as_dict(raw.get("aws"), "aws").get("account_id")
    if account_id not in (None, ""):
        if not isinstance(account_id, str):
            raise ConfigError(
                f"aws.account_id must be a quoted string, got {type(account_id).__name__} "
                f"{account_id!r}. Quote it in YAML so leading zeros survive."
            )
        if not ACCOUNT_ID_PATTERN.fullmatch(account_id):
            raise ConfigError(f"aws.account_id must be 12 digits, got '{account_id}'.")

    iam_map = _as_dict(raw.get("iam_role"), "iam_role")
    template = iam_map.get("name_template")
    if template is not None:
        try:
            str(template).format(project="p", environment="e")
        except (KeyError, IndexError, ValueError) as exc:
            raise ConfigError(
                "iam_role.name_template may only reference {project} and {environment}."
            ) from exc
    attachments = iam_map.get("attachments")
    if attachments is not None:
        for index, entry in enumerate(_as_sequence(attachments, "iam_role.attachments")):
            mapping = _as_dict(entry, f"iam_role.attachments[{index}]")
            unknown = set(mapping.keys()) - {"address", "policy_arn"}
            if unknown:
                joined = ", ".join(sorted(unknown))
                raise ConfigError(f"Unknown keys for iam_role.attachments[{index}]: {joined}.")
            for field in ("address", "policy_arn"):
                value = mapping.get(field)
                if not isinstance(value, str) or not value.strip():
                    raise ConfigError(
                        f"iam_role.attachments[{index}].{field} must be a non-empty string."
                    )


def _build_app_config(raw: Mapping[str, object], env: Mapping[str, str]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    project_root = _to_path(raw.get("project_root", "."))
    logs_value = raw.get("logs_dir")
    logs_dir = (
        _resolve(project_root, logs_value) if logs_value else project_root / ".deployctl" / "logs"
    )

    aws_mapping = _as_dict(raw.get("aws"), "aws")
    region_value = aws_mapping.get("region") or env.get(REGION_FALLBACK_ENV_VAR) or "us-east-1"
    account_value = aws_mapping.get("account_id")
    aws = AwsConfig(
        region=str(region_value),
        account_id=account_value if isinstance(account_value, str) and account_value else None,
        aws_bin=str(aws_mapping.get("aws_bin", "aws")),
    )

    tf_mapping = _as_dict(raw.get("terraform"), "terraform")
    terraform = TerraformConfig(
        directory=_resolve(project_root, tf_mapping.get("directory", "terraform")),
        terraform_bin=str(tf_mapping.get("terraform_bin", "terraform")),
        state_bucket_prefix=str(tf_mapping.get("state_bucket_prefix", "twin-terraform-state")),
        prod_var_file=str(tf_mapping.get("prod_var_file", "prod.tfvars")),
        min_version=str(tf_mapping.get("min_version", "1.10.0")),
    )

    build_mapping = _as_dict(raw.get("build"), "build")
    build = BuildConfig(
        backend_dir=_resolve(project_root, build_mapping.get("backend_dir", "backend")),
        frontend_dir=_resolve(project_root, build_mapping.get("frontend_dir", "frontend")),
        frontend_out=str(build_mapping.get("frontend_out", "out")),
        uv_bin=str(build_mapping.get("uv_bin", "uv")),
        npm_bin=str(build_mapping.get("npm_bin", "npm")),
    )

    iam_mapping = _as_dict(raw.get("iam_role"), "iam_role")
    attachments_raw = iam_mapping.get("attachments")
    attachments = DEFAULT_ATTACHMENTS
    if attachments_raw is not None:
        attachments = tuple(
            PolicyAttachmentConfig(
                address=str(_as_dict(entry, "iam_role.attachments")["address"]).strip(),
                policy_arn=str(_as_dict(entry, "iam_role.attachments")["policy_arn"]).strip(),
            )
            for entry in _as_sequence(attachments_raw, "iam_role.attachments")
        )
    iam_role = IamRoleConfig(
        name_template=str(iam_mapping.get("name_template", "{project}-{environment}-lambda-role")),
        address=str(iam_mapping.get("address", "aws_iam_role.lambda_role")),
        attachments=attachments,
    )

    return AppConfig(
        config_file=config_file,
        environment=str(raw.get("environment", "dev")),
        project_name=str(raw.get("project_name", "twin")).strip(),
        project_root=project_root,
        logs_dir=logs_dir,
        aws=aws,
        terraform=terraform,
        build=build,
        iam_role=iam_role,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if tuple(path_segments) in STRING_ENV_PATHS:
            coerced: object = value.strip()
        else:
            coerced = _coerce_value(value)
        _assign_nested(overrides, path_segments, coerced)
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _resolve(root: Path, value: object) -> Path:
    path = _to_path(value)
    return path if path.is_absolute() else root / path


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ALLOWED_ENVIRONMENTS",
    "AppConfig",
    "AwsConfig",
    "BuildConfig",
    "ConfigError",
    "DEFAULT_ATTACHMENTS",
    "IamRoleConfig",
    "PolicyAttachmentConfig",
    "TerraformConfig",
    "load_config",
]
