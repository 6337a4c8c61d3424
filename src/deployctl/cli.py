"""Typer-powered command line interface for ``deployctl``.

Every command accepts the optional positional ``ENVIRONMENT`` (dev, test or
prod) and ``PROJECT`` arguments. Arguments given on the command line override
the layered :class:`~deployctl.config.AppConfig`, and each command then runs
inside a structured logging operation. Fatal steps exit with status 1,
invalid arguments or configuration with status 2.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .deploy import Deployment, DeploymentError, DeploymentResult
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers import CommandError
from .reconcile import AttachmentStatus, ParentStatus, ReconcileResult, serialize_result

console = Console()

STATE_SHOW_PREVIEW_LINES = 10

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to deployctl's YAML config file.",
)
ENVIRONMENT_ARGUMENT = typer.Argument(
    None,
    metavar="ENVIRONMENT",
    show_default=False,
    help="Target environment (dev | test | prod). Defaults to the configured environment.",
)
PROJECT_ARGUMENT = typer.Argument(
    None,
    metavar="PROJECT",
    show_default=False,
    help="Project name used for resource naming. Defaults to the configured project.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit the result as JSON.")

_PARENT_MESSAGES: Mapping[ParentStatus, str] = {
    ParentStatus.SKIPPED: "No existing role found - will create new one.",
    ParentStatus.ALREADY_MANAGED: "Role already managed by Terraform.",
    ParentStatus.IMPORTED: "IAM role imported.",
    ParentStatus.FATAL: "Failed to import IAM role.",
}

_ATTACHMENT_LABELS: Mapping[AttachmentStatus, str] = {
    AttachmentStatus.IMPORTED: "[green]imported[/green]",
    AttachmentStatus.ALREADY_ATTACHED: "[yellow]already imported[/yellow]",
    AttachmentStatus.NOT_ATTACHED: "[yellow]not attached[/yellow]",
    AttachmentStatus.FAILED: "[red]failed[/red]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Deploy the twin stack with Terraform and keep its state reconciled.

        Pre-existing IAM resources are imported into Terraform state before
        every apply so repeated runs never fail with EntityAlreadyExists.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the resolved configuration.")
app.add_typer(config_app, name="config")


@dataclass
class CliState:
    """Options collected by the root callback."""

    config_file: Path | None = None
    verbose: bool = False


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger()
    if any(isinstance(handler, RichHandler) for handler in root.handlers):
        return
    handler = RichHandler(console=console, show_path=False, markup=False)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if isinstance(state, CliState):
        return state
    state = CliState()
    ctx.obj = state
    return state


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the deployctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"deployctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    ctx.obj = CliState(config_file=config_file, verbose=verbose)
    _configure_logging(verbose)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _load(ctx: typer.Context, environment: str | None, project: str | None) -> AppConfig:
    """Resolve configuration; only arguments given on the command line override it."""
    state = _state(ctx)
    overrides: dict[str, object] = {}
    if environment is not None:
        overrides["environment"] = environment
    if project is not None:
        overrides["project_name"] = project
    try:
        return load_config(config_file=state.config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=ExitCode.VALIDATION) from exc


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(message, style="red", markup=False)
    op.error(message, errors=list(errors or [message]), rc=rc, context=context)
    raise typer.Exit(code=rc)


def _print_json(payload: Mapping[str, object]) -> None:
    console.print(
        json.dumps(payload, indent=2),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def _render_reconcile_result(result: ReconcileResult) -> None:
    parent = result.parent
    style = "red" if result.is_fatal else "green"
    console.print(
        f"[{style}]{_PARENT_MESSAGES[result.parent_status]}[/{style}] "
        f"({parent.name} -> {parent.address})"
    )
    if result.is_fatal and result.detail:
        console.print(f"  {result.detail}", markup=False)
    if not result.attachments:
        return
    table = Table(title="Policy attachments")
    table.add_column("Address")
    table.add_column("Import ID")
    table.add_column("Status")
    for attachment in result.attachments:
        table.add_row(
            attachment.spec.address,
            attachment.import_id,
            _ATTACHMENT_LABELS[attachment.status],
        )
    console.print(table)
    for attachment in result.attachments:
        if attachment.status is AttachmentStatus.FAILED:
            console.print(
                f"{attachment.spec.address}: {attachment.detail}", style="red", markup=False
            )


def _render_deployment(result: DeploymentResult) -> None:
    console.print("\n[bold green]Deployment complete![/bold green]")
    outputs = result.outputs
    if outputs is None:
        return
    if outputs.cloudfront_url:
        console.print(f"CloudFront URL : {outputs.cloudfront_url}")
    if outputs.custom_url:
        console.print(f"Custom domain  : {outputs.custom_url}")
    console.print(f"API Gateway    : {outputs.api_url}")


@app.command()
def deploy(
    ctx: typer.Context,
    environment: str | None = ENVIRONMENT_ARGUMENT,
    project: str | None = PROJECT_ARGUMENT,
    skip_build: bool = typer.Option(
        False, "--skip-build", help="Do not rebuild the Lambda package."
    ),
    skip_frontend: bool = typer.Option(
        False, "--skip-frontend", help="Do not build or sync the frontend."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the planned steps without running them."
    ),
) -> None:
    """Build, reconcile, apply and publish PROJECT to ENVIRONMENT."""
    config = _load(ctx, environment, project)
    environment, project = config.environment, config.project_name
    logger = StructuredLogger(config.logs_dir)
    with logger.operation(
        "deploy",
        args={
            "environment": environment,
            "project": project,
            "skip_build": skip_build,
            "skip_frontend": skip_frontend,
            "dry_run": dry_run,
        },
        target={"kind": "environment", "name": config.environment},
    ) as op:
        deployment = Deployment.for_operation(config, op)
        if dry_run:
            console.print(f"[yellow]Dry run[/yellow]: deploy {project} to {environment}")
            plan = deployment.plan(skip_build=skip_build, skip_frontend=skip_frontend)
            for index, step in enumerate(plan, start=1):
                console.print(f"  {index}. {step}")
            op.success("Dry run complete.", changed=0, context={"plan": plan})
            return

        console.print(f"Deploying [bold]{project}[/bold] to [bold]{environment}[/bold]...")
        try:
            result = deployment.run(skip_build=skip_build, skip_frontend=skip_frontend)
        except DeploymentError as exc:
            _command_error(op, str(exc), context={"step": exc.step})
        except CommandError as exc:
            _command_error(op, str(exc), context={"command": exc.command})

        if result.reconcile is not None:
            _render_reconcile_result(result.reconcile)
        _render_deployment(result)

        context: dict[str, object] = {
            "steps": result.steps,
            "outputs": result.outputs.to_dict() if result.outputs else None,
        }
        warnings = result.reconcile.warnings if result.reconcile else []
        if warnings:
            op.warning("Deployment complete with warnings.", warnings=warnings, context=context)
        else:
            op.success("Deployment complete.", context=context)


@app.command("fix-iam-import")
def fix_iam_import(
    ctx: typer.Context,
    environment: str | None = ENVIRONMENT_ARGUMENT,
    project: str | None = PROJECT_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Import an existing Lambda IAM role and its policies into Terraform state."""
    config = _load(ctx, environment, project)
    environment, project = config.environment, config.project_name
    logger = StructuredLogger(config.logs_dir)
    with logger.operation(
        "fix-iam-import",
        args={
            "environment": environment,
            "project": project,
            "json": json_output,
        },
        target={"kind": "iam-role", "name": config.role_name},
    ) as op:
        deployment = Deployment.for_operation(config, op)
        if not json_output:
            console.print(f"Fixing IAM role import for {project}-{environment}...")
        try:
            account_id = deployment.prepare_terraform(create_workspace=False)
            result = deployment.reconcile_role()
        except CommandError as exc:
            _command_error(op, str(exc), context={"command": exc.command})

        payload = serialize_result(
            result,
            metadata={"account_id": account_id, "workspace": config.environment},
        )
        if json_output:
            _print_json(payload)
        else:
            _render_fix_result(deployment, result)

        if result.is_fatal:
            op.error(
                _PARENT_MESSAGES[ParentStatus.FATAL],
                errors=[result.detail or "import failed"],
                rc=ExitCode.FAILURE,
                context={"result": payload},
            )
            raise typer.Exit(code=ExitCode.FAILURE)
        if result.warnings:
            op.warning(
                "Import complete with warnings.",
                warnings=result.warnings,
                changed=result.import_count,
                context={"result": payload},
            )
        else:
            op.success(
                _PARENT_MESSAGES[result.parent_status],
                changed=result.import_count,
                context={"result": payload},
            )


def _render_fix_result(deployment: Deployment, result: ReconcileResult) -> None:
    if result.parent_status is ParentStatus.SKIPPED:
        console.print(f"IAM role {result.parent.name} does not exist in AWS.")
        console.print("No import needed. You can proceed with deployment.")
        return
    _render_reconcile_result(result)
    if result.parent_status is ParentStatus.ALREADY_MANAGED:
        shown = deployment.terraform.state_show(result.parent.address) or ""
        preview = shown.splitlines()[:STATE_SHOW_PREVIEW_LINES]
        if preview:
            console.print("\nCurrent state:")
            console.print("\n".join(preview), markup=False)
        return
    if result.is_fatal:
        return
    console.print(
        "\n[bold green]Import complete![/bold green] You can now run your deployment again."
    )
    console.print("\nTo verify, run:")
    console.print(f"  cd {deployment.config.terraform.directory}", markup=False)
    console.print(f"  terraform workspace select {deployment.config.environment}", markup=False)
    console.print("  terraform state list | grep lambda_role", markup=False)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    environment: str | None = ENVIRONMENT_ARGUMENT,
    project: str | None = PROJECT_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the resolved configuration."""
    config = _load(ctx, environment, project)
    payload = config.to_dict()
    if json_output:
        _print_json(payload)
        return
    table = Table(title=f"deployctl configuration ({config.config_file})")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in _flatten(payload):
        table.add_row(key, str(value))
    console.print(table)


def _flatten(payload: Mapping[str, object], prefix: str = "") -> list[tuple[str, object]]:
    rows: list[tuple[str, object]] = []
    for key, value in payload.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            rows.extend(_flatten(value, f"{name}."))
        else:
            rows.append((name, value))
    return rows


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
