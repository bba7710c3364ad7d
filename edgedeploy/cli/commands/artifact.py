"""``edgedeploy artifact`` — list, inspect, restore and prune Versions."""

from __future__ import annotations

import typer
from rich.console import Console

from edgedeploy.cli.context import cancel_on_interrupt, exit_code_for, load_orchestrator
from edgedeploy.core.errors import (
    ConcurrentDeploymentError,
    EdgeDeployError,
    NotFoundError,
)
from edgedeploy.models.deployments import DeploymentStatus
from edgedeploy.monitor.renderer import DeployRenderer

console = Console()

artifact_app = typer.Typer(
    name="artifact",
    help="Captured site Versions.",
    no_args_is_help=True,
    add_completion=False,
)


@artifact_app.command(name="list", help="List Versions, newest first.")
def list_cmd(
    limit: int = typer.Argument(10, help="How many Versions to show."),
) -> None:
    orchestrator = load_orchestrator()
    index = orchestrator.artifacts.index()
    if not index.versions:
        console.print("[dim]No versions captured yet.[/dim]")
        return
    renderer = DeployRenderer(console=console)
    console.print(renderer.render_versions(index.versions[:limit], index.current))


@artifact_app.command(name="show", help="Show a Version's manifest.")
def show_cmd(
    version_id: str = typer.Argument(..., help="Version id."),
) -> None:
    orchestrator = load_orchestrator()
    try:
        version = orchestrator.artifacts.get(version_id)
    except NotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)
    console.print(DeployRenderer(console=console).render_version(version))


@artifact_app.command(name="restore", help="Roll the site back to a Version.")
def restore_cmd(
    version_id: str = typer.Argument(..., help="Version id to restore."),
) -> None:
    """Restore *version_id*: snapshot, restore files, invalidate, verify."""
    orchestrator = load_orchestrator()
    renderer = DeployRenderer(console=console)
    try:
        with cancel_on_interrupt() as token:
            deployment = orchestrator.rollback(version_id, cancel=token)
    except NotFoundError as exc:
        console.print(f"[bold red]Cannot restore:[/bold red] {exc}")
        console.print("[dim]Run `edgedeploy artifact list` to see retained versions.[/dim]")
        raise typer.Exit(code=1)
    except ConcurrentDeploymentError as exc:
        console.print(f"[bold red]Another deployment is in progress:[/bold red] {exc}")
        raise typer.Exit(code=1)

    renderer.print_deployment(deployment)
    if deployment.status == DeploymentStatus.FAILED:
        renderer.print_failure_summary(deployment)
    raise typer.Exit(code=exit_code_for(deployment))


@artifact_app.command(name="prune", help="Apply the retention policy.")
def prune_cmd(
    max_age_days: int = typer.Option(
        None, "--max-age-days", help="Remove versions older than this (default from config)."
    ),
    max_count: int = typer.Option(
        None, "--max-count", help="Keep at most this many versions (default from config)."
    ),
) -> None:
    orchestrator = load_orchestrator()
    try:
        removed = orchestrator.prune(max_age_days=max_age_days, max_count=max_count)
    except ConcurrentDeploymentError as exc:
        console.print(f"[bold red]Another deployment is in progress:[/bold red] {exc}")
        raise typer.Exit(code=1)
    except EdgeDeployError as exc:
        console.print(f"[bold red]Prune failed:[/bold red] {type(exc).__name__}: {exc}")
        raise typer.Exit(code=1)
    if not removed:
        console.print("[green]Nothing to prune.[/green]")
        return
    console.print(f"[bold]Pruned {len(removed)} version(s):[/bold]")
    for version_id in removed:
        console.print(f"  [dim]-[/dim] {version_id}")
