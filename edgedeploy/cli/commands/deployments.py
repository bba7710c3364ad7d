"""``edgedeploy deployments`` — past deployment and rollback records."""

from __future__ import annotations

import typer
from rich.console import Console

from edgedeploy.cli.context import load_orchestrator
from edgedeploy.core.errors import NotFoundError
from edgedeploy.monitor.renderer import DeployRenderer

console = Console()

deployments_app = typer.Typer(
    name="deployments",
    help="Deployment records.",
    no_args_is_help=True,
    add_completion=False,
)


@deployments_app.command(name="list", help="List recent deployments.")
def list_cmd(
    limit: int = typer.Argument(10, help="How many deployments to show."),
) -> None:
    orchestrator = load_orchestrator()
    summaries = orchestrator.log.list(limit)
    if not summaries:
        console.print("[dim]No deployments recorded.[/dim]")
        return
    console.print(DeployRenderer(console=console).render_deployments(summaries))


@deployments_app.command(name="show", help="Show one deployment record.")
def show_cmd(
    deployment_id: str = typer.Argument(..., help="Deployment id."),
) -> None:
    orchestrator = load_orchestrator()
    try:
        deployment = orchestrator.log.get(deployment_id)
    except NotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)
    renderer = DeployRenderer(console=console)
    renderer.print_deployment(deployment)
    renderer.print_failure_summary(deployment)
