"""Typer-powered command line interface for ``provctl``.

Two unrelated provisioning procedures share this entry point:

* ``provctl folders provision`` creates one directory per account listed in
  a text file and grants each account full control on its directory.
* ``provctl instance create`` launches one EC2 instance, creates a tagged
  data volume in the same availability zone and attaches it.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ALLOWED_PRINCIPAL_TYPES, AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .folders import (
    AccountListError,
    FolderEvent,
    FolderOutcome,
    provision_folders,
    read_account_names,
)
from .instances import (
    ALLOWED_ENVIRONMENTS,
    InstanceProvisioner,
    InstanceRequest,
    ProvisionResult,
    RequestValidationError,
    ResourceTags,
)
from .logging import OperationScope, StructuredLogger
from .providers import AclProvider, Ec2Error, create_ec2_client

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to provctl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the result as JSON instead of status lines.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provisioning helpers for account folders and EC2 instances.

        Each command performs a single forward-only pass and records the
        outcome in the operations log.
        """
    ).strip(),
)
folders_app = typer.Typer(help="Provision per-account directories and permissions.")
instance_app = typer.Typer(help="Provision an EC2 instance with a data volume.")
config_app = typer.Typer(help="Inspect the resolved configuration.")

app.add_typer(folders_app, name="folders")
app.add_typer(instance_app, name="instance")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    acl: AclProvider


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        acl=AclProvider(
            getfacl_bin=config.folders.getfacl_bin,
            setfacl_bin=config.folders.setfacl_bin,
        ),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the provctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    runtime = _ensure_runtime(ctx, config_file)
    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"provctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


# ----------------------------------------------------------------------
# folders
# ----------------------------------------------------------------------


def _render_folder_event(event: FolderEvent, outcome: FolderOutcome) -> None:
    if event == "exists":
        console.print(f"[yellow]{outcome.account}: already exists[/yellow] ({outcome.path})")
    elif event == "created":
        verb = "would create" if outcome.dry_run else "created"
        console.print(f"[green]{outcome.account}: {verb}[/green] ({outcome.path})")
    elif event == "granted":
        verb = "would grant" if outcome.dry_run else "granted"
        console.print(f"[green]{outcome.account}: {verb}[/green] full control")
    else:
        console.print(f"[red]{outcome.account}: error: {outcome.error}[/red]")


@folders_app.command("provision")
def folders_provision(
    ctx: typer.Context,
    accounts_file: Path | None = typer.Option(
        None,
        "--accounts-file",
        dir_okay=False,
        help="Text file with one account name per line (defaults to config).",
    ),
    base_path: Path | None = typer.Option(
        None,
        "--base-path",
        file_okay=False,
        help="Parent directory for the account folders (defaults to config).",
    ),
    principal_type: str | None = typer.Option(
        None,
        "--principal-type",
        help="Grant to a 'user' or a 'group' principal (defaults to config).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Report the folders and grants that would be applied.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a folder per account and grant each account full control."""
    runtime = _get_runtime(ctx)
    folders_config = runtime.config.folders
    source = accounts_file or folders_config.accounts_file
    base = base_path or folders_config.base_path
    kind = principal_type or folders_config.principal_type
    args = {
        "accounts_file": source,
        "base_path": base,
        "principal_type": kind,
        "dry_run": dry_run,
    }

    with runtime.logger.operation(
        "folders provision",
        args=args,
        target={"kind": "folders", "base_path": base},
    ) as op:
        if kind not in ALLOWED_PRINCIPAL_TYPES:
            allowed = ", ".join(sorted(ALLOWED_PRINCIPAL_TYPES))
            _command_error(op, f"Unsupported principal type '{kind}'. Allowed: {allowed}.")

        try:
            accounts = read_account_names(source)
        except AccountListError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        op.add_step("accounts.read", status="success", detail=f"{len(accounts)} account(s)")

        def _on_event(event: FolderEvent, outcome: FolderOutcome) -> None:
            status = "error" if event == "error" else "success"
            detail = outcome.error if event == "error" else str(outcome.path)
            op.add_step(f"{event}:{outcome.account}", status=status, detail=detail)
            if not json_output:
                _render_folder_event(event, outcome)

        report = provision_folders(
            base,
            accounts,
            acl=runtime.acl,
            principal_type=kind,
            dry_run=dry_run,
            reporter=_on_event,
        )

        if json_output:
            console.print_json(data=report.to_dict())

        failures = report.failures
        changed = 0 if dry_run else report.created_count + report.granted_count
        if failures:
            errors = [f"{outcome.account}: {outcome.error}" for outcome in failures]
            if not json_output:
                console.print(
                    f"[bold yellow]completed[/bold yellow] with {len(failures)} "
                    f"failure(s) across {len(report.outcomes)} account(s)."
                )
            op.warning(
                "Folder provisioning completed with failures.",
                errors=errors,
                changed=changed,
                context=report.to_dict(),
                rc=int(ExitCode.PROVIDER),
            )
            raise typer.Exit(code=ExitCode.PROVIDER)

        if not json_output:
            prefix = "[yellow]Dry run[/yellow]: " if dry_run else ""
            console.print(
                f"{prefix}[bold green]completed[/bold green]: "
                f"{len(report.outcomes)} account(s) processed."
            )
        op.success(
            "Folder provisioning completed.",
            changed=changed,
            context=report.to_dict(),
        )


# ----------------------------------------------------------------------
# instance
# ----------------------------------------------------------------------


def _render_provision_summary(result: ProvisionResult) -> None:
    table = Table(show_header=True, header_style="bold magenta", title="Provisioning summary")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    rows = [
        ("Instance ID", result.instance_id),
        ("Instance type", result.instance_type),
        ("Private IP", result.private_ip or "-"),
        ("Public IP", result.public_ip or "-"),
        ("Availability zone", result.availability_zone or "-"),
        ("Volume ID", result.volume_id or "-"),
        ("Volume size", f"{result.volume_size} GiB" if result.volume_size else "-"),
        ("Volume type", result.volume_type or "-"),
        ("Device", result.device_name or "-"),
    ]
    for label, value in rows:
        table.add_row(label, str(value))
    for key, value in result.instance_tags.items():
        table.add_row(f"Instance tag {key}", value)
    for key, value in result.volume_tags.items():
        table.add_row(f"Volume tag {key}", value)
    console.print(table)


@instance_app.command("create")
def instance_create(
    ctx: typer.Context,
    image_id: str = typer.Option(..., "--image-id", help="AMI to launch."),
    instance_type: str | None = typer.Option(
        None,
        "--instance-type",
        help="Instance size (defaults to config, t3.micro).",
    ),
    key_name: str = typer.Option(..., "--key-name", help="EC2 key pair name."),
    subnet_id: str = typer.Option(..., "--subnet-id", help="Subnet to launch into."),
    security_group_ids: list[str] = typer.Option(
        ...,
        "--security-group-id",
        help="Security group id; repeat for several groups.",
    ),
    volume_size: int | None = typer.Option(
        None,
        "--volume-size",
        help="Data volume size in GiB (defaults to config, 20).",
    ),
    volume_type: str | None = typer.Option(
        None,
        "--volume-type",
        help="Data volume type (defaults to config, gp3).",
    ),
    system: str = typer.Option(..., "--system", help="System tag value."),
    owner: str = typer.Option(..., "--owner", help="Owner tag value."),
    environment: str = typer.Option(
        ...,
        "--environment",
        help=f"Environment tag value: {', '.join(ALLOWED_ENVIRONMENTS)}.",
    ),
    billable: str = typer.Option(..., "--billable", help="Billable tag value."),
    region: str | None = typer.Option(None, "--region", help="AWS region override."),
    profile: str | None = typer.Option(None, "--profile", help="AWS named profile."),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Ask EC2 to validate the launch request without creating resources.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Launch an instance, create a data volume in its zone, and attach it."""
    runtime = _get_runtime(ctx)
    defaults = runtime.config.instances
    request = InstanceRequest(
        image_id=image_id,
        key_name=key_name,
        subnet_id=subnet_id,
        security_group_ids=tuple(security_group_ids),
        tags=ResourceTags(
            system=system,
            owner=owner,
            environment=environment,
            billable=billable,
        ),
        instance_type=instance_type or defaults.instance_type,
        volume_size=volume_size if volume_size is not None else defaults.volume_size,
        volume_type=volume_type or defaults.volume_type,
        device_name=defaults.device_name,
    )
    args = {
        "image_id": image_id,
        "instance_type": request.instance_type,
        "key_name": key_name,
        "subnet_id": subnet_id,
        "security_group_ids": list(security_group_ids),
        "volume_size": request.volume_size,
        "volume_type": request.volume_type,
        "tags": {
            "system": system,
            "owner": owner,
            "environment": environment,
            "billable": billable,
        },
        "region": region or defaults.region,
        "dry_run": dry_run,
    }

    with runtime.logger.operation(
        "instance create",
        args=args,
        target={"kind": "instance", "name": request.tags.instance_name},
    ) as op:
        try:
            request.validate()
        except RequestValidationError as exc:
            _command_error(op, "Invalid instance request.", errors=exc.problems)

        def _on_step(step: str, message: str) -> None:
            status = "error" if step == "failed" else "success"
            op.add_step(step, status=status, detail=message)
            if json_output:
                return
            if step == "failed":
                console.print(f"[red]error: {message}[/red]")
            else:
                console.print(f"[cyan]{step}[/cyan] {message}")

        try:
            client = create_ec2_client(
                region=region or defaults.region,
                profile=profile or defaults.profile,
            )
            provisioner = InstanceProvisioner(
                client=client,
                running_timeout=defaults.running_timeout,
                poll_interval=defaults.poll_interval,
                reporter=_on_step,
            )
            result = provisioner.provision(request, dry_run=dry_run)
        except (ClientError, BotoCoreError, Ec2Error) as exc:
            _command_error(
                op,
                f"Instance provisioning failed: {exc}",
                rc=ExitCode.PROVIDER,
                errors=[str(exc)],
            )

        if json_output:
            console.print_json(data=result.to_dict())
        elif dry_run:
            console.print("[yellow]Dry run[/yellow]: launch request validated by EC2.")
        else:
            _render_provision_summary(result)

        op.success(
            "Instance dry-run complete." if dry_run else "Instance provisioned.",
            changed=0 if dry_run else 3,
            context=result.to_dict(),
        )


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the resolved configuration."""
    runtime = _get_runtime(ctx)
    payload = runtime.config.to_dict()
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=payload)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Key", style="bold")
            table.add_column("Value")
            for key, value in _flatten(payload):
                table.add_row(key, "" if value is None else str(value))
            console.print(table)
        op.success("Reported configuration.", changed=0)


def _flatten(payload: dict[str, object], prefix: str = "") -> list[tuple[str, object]]:
    rows: list[tuple[str, object]] = []
    for key, value in payload.items():
        label = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, f"{label}."))
        else:
            rows.append((label, value))
    return rows


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
