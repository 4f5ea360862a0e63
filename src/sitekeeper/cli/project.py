"""CLI commands for creating, renaming and removing projects."""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from sitekeeper.core.errors import ProjectOperationError, SitekeeperError
from sitekeeper.core.project_manager import ProjectManager
from sitekeeper.core.settings import WorkspaceSettings
from sitekeeper.utils.debug import set_enabled

app: TyperType = typer.Typer(help="Create and manage Sitekeeper projects.")

WorkspaceOption = Annotated[
    Path | None,
    typer.Option("--workspace", help="Directory that holds projects."),
]
TemplateOption = Annotated[
    Path | None,
    typer.Option("--template", help="Starter template directory override."),
]
SkipSetupFlag = Annotated[
    bool,
    typer.Option("--skip-setup", help="Do not run the setup command."),
]
SetupTimeoutOption = Annotated[
    float | None,
    typer.Option("--setup-timeout", help="Seconds before the setup command is killed."),
]
VerboseFlag = Annotated[
    bool,
    typer.Option("--verbose", help="Emit debug-level structured logs."),
]
JsonFlag = Annotated[
    bool,
    typer.Option("--json", help="Emit JSON instead of a table."),
]
YesFlag = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Skip the confirmation prompt."),
]


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    if verbose:
        set_enabled(True)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _build_manager(
    workspace: Path | None = None,
    template: Path | None = None,
    skip_setup: bool = False,
    setup_timeout: float | None = None,
) -> ProjectManager:
    try:
        settings = WorkspaceSettings.from_env(
            root=workspace,
            template_path=template,
            setup_command=() if skip_setup else None,
            setup_timeout=setup_timeout,
        )
    except (ValidationError, ValueError) as exc:
        typer.secho(f"Invalid configuration: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    return ProjectManager(settings)


def _fail(console: Console, exc: SitekeeperError) -> None:
    console.print(f"[red]FAILED[/red] {escape(str(exc))}", highlight=False)
    if isinstance(exc, ProjectOperationError):
        details = exc.to_dict()
        console.print(
            escape(
                f"  kind: {details['error']}  operation: {details['operation']}  "
                f"path: {details['path']}"
            ),
            highlight=False,
        )
        if exc.error.requires_attention:
            console.print(
                "  [yellow]The target may be in an inconsistent state; "
                "inspect it manually.[/yellow]"
            )
    raise typer.Exit(code=1) from exc


def create(
    name: str,
    workspace: WorkspaceOption = None,
    template: TemplateOption = None,
    skip_setup: SkipSetupFlag = False,
    setup_timeout: SetupTimeoutOption = None,
    verbose: VerboseFlag = False,
) -> None:
    """Create a new project from the starter template."""

    _configure_logging(verbose)
    manager = _build_manager(workspace, template, skip_setup, setup_timeout)
    console = Console(soft_wrap=True)

    try:
        path = asyncio.run(manager.create_project(name))
    except SitekeeperError as exc:
        _fail(console, exc)
        return

    console.print(f"[green]CREATED[/green] {name} → {path}", highlight=False)


def rename(
    old_name: str,
    new_name: str,
    workspace: WorkspaceOption = None,
    verbose: VerboseFlag = False,
) -> None:
    """Rename an existing project."""

    _configure_logging(verbose)
    manager = _build_manager(workspace)
    console = Console(soft_wrap=True)

    try:
        asyncio.run(manager.rename_project(old_name, new_name))
    except SitekeeperError as exc:
        _fail(console, exc)
        return

    console.print(f"[green]RENAMED[/green] {old_name} → {new_name}", highlight=False)


def delete(
    name: str,
    workspace: WorkspaceOption = None,
    yes: YesFlag = False,
    verbose: VerboseFlag = False,
) -> None:
    """Delete a project. This cannot be undone."""

    _configure_logging(verbose)
    manager = _build_manager(workspace)
    console = Console(soft_wrap=True)

    if not yes and not typer.confirm(f'Delete "{name}"? This cannot be undone.'):
        console.print("Cancelled.")
        return

    try:
        asyncio.run(manager.delete_project(name))
    except SitekeeperError as exc:
        _fail(console, exc)
        return

    console.print(f"[green]DELETED[/green] {name}", highlight=False)


def list_command(
    workspace: WorkspaceOption = None,
    json_output: JsonFlag = False,
) -> None:
    """List projects in the workspace."""

    _configure_logging(False)
    manager = _build_manager(workspace)
    projects = asyncio.run(manager.list_projects())

    if json_output:
        typer.echo(json.dumps({"root": str(manager.root), "projects": projects}))
        return

    console = Console(soft_wrap=True)
    if not projects:
        console.print(f"No projects in {manager.root}", highlight=False)
        return
    for project in projects:
        console.print(project, highlight=False)


def validate(
    name: str,
    workspace: WorkspaceOption = None,
) -> None:
    """Check whether NAME is usable for a new project."""

    _configure_logging(False)
    manager = _build_manager(workspace)
    check = asyncio.run(manager.validate_name_available(name))

    if check.valid:
        typer.secho(f"{name!r} is a valid project name", fg=typer.colors.GREEN)
        return
    typer.secho(f"{name!r} is invalid: {check.error}", err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def run_cli(args: Sequence[str] | None = None) -> None:
    app(args=args)


app.command("create")(create)
app.command("rename")(rename)
app.command("delete")(delete)
app.command("list")(list_command)
app.command("validate")(validate)
