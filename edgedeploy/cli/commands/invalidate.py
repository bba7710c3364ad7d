"""``edgedeploy invalidate`` — manual CDN invalidations.

Presets (``full``, ``documents``, ``assets``, ``api``) submit a fixed set
of patterns. ``plan`` previews the cost of invalidating arbitrary paths.
"""

from __future__ import annotations

import typer
from rich.console import Console

from edgedeploy.cli.context import load_orchestrator
from edgedeploy.core.errors import EdgeDeployError
from edgedeploy.core.invalidation_planner import PRESETS
from edgedeploy.core.phases import new_deployment_id
from edgedeploy.models.invalidations import InvalidationStatus
from edgedeploy.monitor.renderer import DeployRenderer

console = Console()

invalidate_app = typer.Typer(
    name="invalidate",
    help="CDN cache invalidation.",
    no_args_is_help=True,
    add_completion=False,
)

_PRESET_HELP = {
    "full": "Invalidate everything (/*).",
    "documents": "Invalidate HTML documents.",
    "assets": "Invalidate static asset directories.",
    "api": "Invalidate /api/*.",
}


def _submit_preset(name: str, wait: bool) -> None:
    orchestrator = load_orchestrator()
    renderer = DeployRenderer(console=console)
    plan = orchestrator.planner.preset(name)
    console.print(renderer.render_plan(plan))
    try:
        invalidation = orchestrator.executor.submit(
            plan, deployment_id=new_deployment_id("invalidate")
        )
        if wait:
            console.print("[cyan]Waiting for the CDN to confirm...[/cyan]")
            invalidation = orchestrator.executor.await_completion(
                invalidation, orchestrator.config.invalidation_max_wait_seconds
            )
    except EdgeDeployError as exc:
        console.print(f"[bold red]Invalidation failed:[/bold red] {type(exc).__name__}: {exc}")
        raise typer.Exit(code=1)

    console.print(
        f"[bold]Invalidation[/bold] {invalidation.invalidation_id}: "
        f"{renderer.invalidation_label(invalidation.status)}"
    )
    if wait and invalidation.status != InvalidationStatus.COMPLETED:
        raise typer.Exit(code=2)


def _preset_command(name: str):
    def command(
        wait: bool = typer.Option(False, "--wait", help="Poll until the CDN completes it."),
    ) -> None:
        _submit_preset(name, wait)

    command.__doc__ = _PRESET_HELP.get(name, f"Invalidate the {name} preset.")
    return command


for _name in PRESETS:
    invalidate_app.command(name=_name, help=_PRESET_HELP.get(_name))(_preset_command(_name))


@invalidate_app.command(name="status", help="Show the status of an invalidation.")
def status_cmd(
    invalidation_id: str = typer.Argument(..., help="Invalidation id."),
) -> None:
    orchestrator = load_orchestrator()
    try:
        status = orchestrator.executor.status(invalidation_id)
    except EdgeDeployError as exc:
        console.print(f"[bold red]Status check failed:[/bold red] {type(exc).__name__}: {exc}")
        raise typer.Exit(code=1)
    label = DeployRenderer(console=console).invalidation_label(status)
    console.print(f"[bold]{invalidation_id}[/bold]: {label}")


@invalidate_app.command(name="history", help="Show recent invalidations.")
def history_cmd(
    limit: int = typer.Argument(10, help="How many entries to show."),
) -> None:
    orchestrator = load_orchestrator()
    entries = orchestrator.executor.history(limit)
    if not entries:
        console.print("[dim]No invalidations recorded.[/dim]")
        return
    console.print(DeployRenderer(console=console).render_history(entries))


@invalidate_app.command(name="plan", help="Preview patterns and cost for changed paths.")
def plan_cmd(
    paths: list[str] = typer.Argument(..., help="Changed paths, e.g. /blog/post.html"),
    full: bool = typer.Option(False, "--full", help="Plan a full invalidation."),
) -> None:
    orchestrator = load_orchestrator()
    plan = orchestrator.planner.plan(paths, full=full)
    console.print(DeployRenderer(console=console).render_plan(plan))
