"""``edgedeploy deploy`` — build, publish, capture, invalidate, verify.

Exit codes: 0 success, 1 failure, 2 succeeded with warnings.
"""

from __future__ import annotations

import typer
from rich.console import Console

from edgedeploy.cli.context import cancel_on_interrupt, exit_code_for, load_orchestrator
from edgedeploy.core.errors import ConcurrentDeploymentError
from edgedeploy.models.deployments import DeploymentStatus
from edgedeploy.monitor.renderer import DeployRenderer

console = Console()


def deploy_cmd(
    skip_build: bool = typer.Option(
        False, "--skip-build", help="Publish the existing build directory as-is."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Compute the diff and invalidation plan; write nothing."
    ),
    aggressive_invalidate: bool = typer.Option(
        False,
        "--aggressive-invalidate",
        help="Invalidate the whole distribution instead of the changed paths.",
    ),
    source_ref: str = typer.Option(
        None,
        "--source-ref",
        help="Commit or tag being deployed (recorded on the Version).",
    ),
) -> None:
    """Deploy the site."""
    orchestrator = load_orchestrator()
    renderer = DeployRenderer(console=console)

    try:
        with cancel_on_interrupt() as token:
            deployment = orchestrator.deploy(
                skip_build=skip_build,
                dry_run=dry_run,
                aggressive_invalidate=aggressive_invalidate,
                source_ref=source_ref,
                cancel=token,
            )
    except ConcurrentDeploymentError as exc:
        console.print(f"[bold red]Another deployment is in progress:[/bold red] {exc}")
        console.print(
            "[dim]Wait for it to finish, or run `edgedeploy lease release --force` "
            "if it is known to be dead.[/dim]"
        )
        raise typer.Exit(code=1)

    renderer.print_deployment(deployment)
    if deployment.status != DeploymentStatus.SUCCESS:
        renderer.print_failure_summary(deployment)
    raise typer.Exit(code=exit_code_for(deployment))
