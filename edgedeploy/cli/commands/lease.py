"""``edgedeploy lease`` — inspect or break the deployment lease."""

from __future__ import annotations

from datetime import datetime, timezone

import typer
from rich.console import Console

from edgedeploy.cli.context import load_orchestrator
from edgedeploy.monitor.renderer import DeployRenderer

console = Console()

lease_app = typer.Typer(
    name="lease",
    help="The advisory deployment lease.",
    no_args_is_help=True,
    add_completion=False,
)


@lease_app.command(name="status", help="Show who holds the lease.")
def status_cmd() -> None:
    orchestrator = load_orchestrator()
    lease = orchestrator.lease.status()
    console.print(
        DeployRenderer(console=console).render_lease(lease, datetime.now(timezone.utc))
    )


@lease_app.command(name="release", help="Release an expired lease (or any, with --force).")
def release_cmd(
    force: bool = typer.Option(
        False, "--force", help="Release even if the lease has not expired."
    ),
) -> None:
    orchestrator = load_orchestrator()
    lease = orchestrator.lease.status()
    if lease is None:
        console.print("[green]No lease to release.[/green]")
        return
    if not force and not lease.is_expired(datetime.now(timezone.utc)):
        console.print(
            f"[bold red]Lease is held by {lease.holder} until "
            f"{lease.expires_at:%Y-%m-%d %H:%M:%S} UTC.[/bold red]"
        )
        console.print("[dim]Use --force if that deployment is known to be dead.[/dim]")
        raise typer.Exit(code=1)
    orchestrator.lease.force_release()
    console.print(f"[yellow]Released lease {lease.lease_id} held by {lease.holder}.[/yellow]")
