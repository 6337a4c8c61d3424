"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from deployctl.config import DEFAULT_ATTACHMENTS, AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.environment == "dev"
    assert config.project_name == "twin"
    assert config.role_name == "twin-dev-lambda-role"
    assert config.aws.region == "us-east-1"
    assert config.aws.account_id is None
    assert config.terraform.directory == Path("terraform")
    assert config.terraform.backend_bucket("123") == "twin-terraform-state-123"
    assert config.build.frontend_dir == Path("frontend")
    assert config.iam_role.attachments == DEFAULT_ATTACHMENTS
    assert config.logs_dir == Path(".deployctl/logs")
    assert config.is_production is False


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file and paths resolve against the root."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text(
        f"project_root: {tmp_path}\n"
        "project_name: mirror\n"
        "aws:\n"
        "  region: eu-central-1\n"
        "  account_id: '001234567012'\n"
        "terraform:\n"
        "  directory: infra\n"
        "  state_bucket_prefix: acme-state\n"
        "iam_role:\n"
        "  attachments:\n"
        "    - address: aws_iam_role_policy_attachment.lambda_basic\n"
        "      policy_arn: arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole\n",
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.project_name == "mirror"
    assert config.role_name == "mirror-dev-lambda-role"
    assert config.aws.region == "eu-central-1"
    assert config.aws.account_id == "001234567012"
    assert config.terraform.directory == tmp_path / "infra"
    assert config.terraform.backend_bucket("1") == "acme-state-1"
    assert len(config.iam_role.attachments) == 1
    assert config.logs_dir == tmp_path / ".deployctl" / "logs"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text("aws:\n  region: eu-west-1\n", encoding="utf-8")
    env = {
        "DEPLOYCTL_CONFIG_FILE": str(cfg),
        "DEPLOYCTL_AWS__REGION": "ap-southeast-2",
        "DEPLOYCTL_TERRAFORM__TERRAFORM_BIN": "/opt/terraform",
        "DEPLOYCTL_LOGS_DIR": str(tmp_path / "logs"),
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.aws.region == "ap-southeast-2"
    assert config.terraform.terraform_bin == "/opt/terraform"
    assert config.logs_dir == tmp_path / "logs"


def test_env_account_id_keeps_leading_zeros(tmp_path: Path) -> None:
    """Account ids from the environment are not parsed as YAML numbers."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"DEPLOYCTL_AWS__ACCOUNT_ID": "012345670123"},
    )

    assert config.aws.account_id == "012345670123"
    assert config.terraform.backend_bucket(config.aws.account_id) == (
        "twin-terraform-state-012345670123"
    )


def test_unquoted_account_id_rejected(tmp_path: Path) -> None:
    """An unquoted leading-zero id is an octal int in YAML and must be quoted."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text("aws:\n  account_id: 001234567012\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="aws.account_id must be a quoted string"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("value", ["12345", "12345678901a", "1234567890123"])
def test_malformed_account_id_rejected(tmp_path: Path, value: str) -> None:
    """Account ids must be exactly 12 digits."""
    with pytest.raises(ConfigError, match="aws.account_id must be 12 digits"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={"DEPLOYCTL_AWS__ACCOUNT_ID": value},
        )


def test_default_aws_region_fallback(tmp_path: Path) -> None:
    """DEFAULT_AWS_REGION is used when no region is configured."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"DEFAULT_AWS_REGION": "us-west-2"},
    )

    assert config.aws.region == "us-west-2"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Explicit overrides (CLI arguments) take precedence over everything else."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"DEPLOYCTL_ENVIRONMENT": "test"},
        overrides={"environment": "prod", "project_name": "twin"},
    )

    assert config.environment == "prod"
    assert config.is_production is True
    assert config.role_name == "twin-prod-lambda-role"


def test_unknown_keys_rejected(tmp_path: Path) -> None:
    """Unknown keys are rejected with a helpful error."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text("unknown: true\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Unknown configuration keys: unknown"):
        load_config(config_file=cfg, env={})


def test_unknown_section_keys_rejected(tmp_path: Path) -> None:
    """Unknown nested keys are rejected per section."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text("terraform:\n  workspace: dev\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Unknown terraform configuration keys: workspace"):
        load_config(config_file=cfg, env={})


def test_invalid_environment_rejected(tmp_path: Path) -> None:
    """Only dev, test and prod environments are accepted."""
    with pytest.raises(ConfigError, match="Unsupported environment 'staging'"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={},
            overrides={"environment": "staging"},
        )


def test_blank_project_rejected(tmp_path: Path) -> None:
    """Project names must be non-empty."""
    with pytest.raises(ConfigError, match="project_name"):
        load_config(config_file=tmp_path / "missing.yml", env={}, overrides={"project_name": " "})


def test_invalid_name_template_rejected(tmp_path: Path) -> None:
    """Role name templates may only use the known placeholders."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text("iam_role:\n  name_template: '{project}-{region}-role'\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="name_template"):
        load_config(config_file=cfg, env={})


def test_attachment_entries_validated(tmp_path: Path) -> None:
    """Attachment entries need both address and policy ARN."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text(
        "iam_role:\n  attachments:\n    - address: aws_iam_role_policy_attachment.x\n",
        encoding="utf-8",
    )

    with pytest.raises(ConfigError, match=r"attachments\[0\]\.policy_arn"):
        load_config(config_file=cfg, env={})


def test_invalid_yaml_structure(tmp_path: Path) -> None:
    """Top-level YAML must be a mapping."""
    cfg = tmp_path / "deployctl.yml"
    cfg.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """to_dict returns plain values for JSON output."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    payload = config.to_dict()

    assert payload["environment"] == "dev"
    iam = payload["iam_role"]
    assert isinstance(iam, dict)
    assert iam["address"] == "aws_iam_role.lambda_role"
    assert len(iam["attachments"]) == 3
