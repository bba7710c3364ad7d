"""Rich terminal renderer for deployments, versions and invalidations.

Color scheme
------------
- green   : passed / success / completed
- red     : failed
- yellow  : warning / in progress
- dim     : skipped
- magenta : rolled back
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from edgedeploy.models.deployments import (
    Deployment,
    DeploymentStatus,
    DeploymentSummary,
    PhaseStatus,
)
from edgedeploy.models.invalidations import (
    InvalidationLogEntry,
    InvalidationPlan,
    InvalidationStatus,
)
from edgedeploy.models.lease import Lease
from edgedeploy.models.versions import Version, VersionSummary

# ---------------------------------------------------------------------------
# Status -> Rich markup
# ---------------------------------------------------------------------------

_PHASE_LABELS: dict[PhaseStatus, str] = {
    PhaseStatus.PASSED: "[green]PASSED[/green]",
    PhaseStatus.FAILED: "[bold red]FAILED[/bold red]",
    PhaseStatus.WARNING: "[yellow]WARNING[/yellow]",
    PhaseStatus.SKIPPED: "[dim]SKIPPED[/dim]",
}

_STATUS_LABELS: dict[DeploymentStatus, str] = {
    DeploymentStatus.SUCCESS: "[green]success[/green]",
    DeploymentStatus.FAILED: "[bold red]failed[/bold red]",
    DeploymentStatus.IN_PROGRESS: "[yellow]in progress[/yellow]",
    DeploymentStatus.ROLLED_BACK: "[magenta]rolled back[/magenta]",
}

_INVALIDATION_LABELS: dict[InvalidationStatus, str] = {
    InvalidationStatus.COMPLETED: "[green]completed[/green]",
    InvalidationStatus.IN_PROGRESS: "[yellow]in progress[/yellow]",
    InvalidationStatus.PENDING: "[dim]pending[/dim]",
    InvalidationStatus.FAILED: "[bold red]failed[/bold red]",
}

_BORDERS: dict[DeploymentStatus, str] = {
    DeploymentStatus.SUCCESS: "green",
    DeploymentStatus.FAILED: "red",
    DeploymentStatus.IN_PROGRESS: "yellow",
    DeploymentStatus.ROLLED_BACK: "magenta",
}


def _ts(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def _size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _detail(detail: dict[str, Any]) -> str:
    parts = []
    for key, value in detail.items():
        if isinstance(value, list):
            value = f"{len(value)} item(s)"
        parts.append(f"{key}={value}")
    return ", ".join(parts)


class DeployRenderer:
    """Renders edgedeploy records as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def render_deployment(self, deployment: Deployment) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Phase", min_width=12)
        table.add_column("Result", justify="center", min_width=10)
        table.add_column("Time", justify="right", style="dim")
        table.add_column("Details", min_width=20)
        for phase in deployment.phases:
            details = (
                f"[red]{phase.error_kind}: {escape(phase.error)}[/red]"
                if phase.error
                else escape(_detail(phase.detail))
            )
            table.add_row(
                phase.name,
                _PHASE_LABELS[phase.status],
                f"{phase.duration_ms} ms",
                details,
            )

        summary_parts = [
            f"[bold]Status:[/bold] {_STATUS_LABELS[deployment.status]}",
            f"[bold]State:[/bold] {deployment.state.value}",
        ]
        if deployment.produced_version:
            summary_parts.append(f"[bold]Version:[/bold] {deployment.produced_version}")
        if deployment.target_version:
            summary_parts.append(f"[bold]Target:[/bold] {deployment.target_version}")
        if deployment.invalidation_id:
            summary_parts.append(f"[bold]Invalidation:[/bold] {deployment.invalidation_id}")
        if deployment.dry_run:
            summary_parts.append("[yellow]dry run[/yellow]")

        parts: list[Any] = [table, Text(""), Text.from_markup("  |  ".join(summary_parts))]
        for warning in deployment.warnings:
            parts.append(Text.from_markup(f"[yellow]warning:[/yellow] {escape(warning)}"))

        return Panel(
            Group(*parts),
            title=f"[bold]{deployment.kind.value.title()} {deployment.deployment_id}[/bold]",
            subtitle=f"Started {_ts(deployment.started_at)} UTC",
            border_style=_BORDERS[deployment.status],
            padding=(1, 2),
        )

    def print_deployment(self, deployment: Deployment) -> None:
        self.console.print(self.render_deployment(deployment))

    def print_failure_summary(self, deployment: Deployment) -> None:
        """Phase, error kind and message of the failed phase."""
        failed = deployment.failed_phase
        if failed is None:
            return
        lines = [
            f"[bold]Phase:[/bold]   {failed.name}",
            f"[bold]Error:[/bold]   {failed.error_kind}",
            f"[bold]Message:[/bold] {escape(failed.error or '')}",
        ]
        if deployment.produced_version is None and failed.name in ("publish", "capture"):
            lines += [
                "",
                "[dim]No Version was captured; the site may be partially updated.",
                "Run `edgedeploy artifact restore <version>` to roll back.[/dim]",
            ]
        self.console.print(
            Panel(
                "\n".join(lines),
                title="[bold red]Deployment failed[/bold red]",
                border_style="red",
                padding=(1, 2),
            )
        )

    def render_deployments(self, summaries: list[DeploymentSummary]) -> Table:
        table = Table(title="Deployments", header_style="bold cyan")
        table.add_column("ID", style="cyan")
        table.add_column("Kind")
        table.add_column("Status", justify="center")
        table.add_column("Started")
        table.add_column("Finished")
        table.add_column("Version")
        table.add_column("Invalidation", style="dim")
        for s in summaries:
            table.add_row(
                s.deployment_id,
                s.kind.value,
                _STATUS_LABELS[s.status],
                _ts(s.started_at),
                _ts(s.finished_at),
                s.produced_version or "-",
                s.invalidation_id or "-",
            )
        return table

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def render_versions(self, summaries: list[VersionSummary], current: str | None) -> Table:
        table = Table(title="Versions (newest first)", header_style="bold cyan")
        table.add_column("", width=1)
        table.add_column("Version", style="cyan")
        table.add_column("Created")
        table.add_column("Files", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Source ref", style="dim")
        for s in summaries:
            table.add_row(
                "[green]*[/green]" if s.version_id == current else "",
                s.version_id,
                _ts(s.timestamp),
                str(s.file_count),
                _size(s.size),
                s.source_ref or "-",
            )
        return table

    def render_version(self, version: Version, *, limit: int = 50) -> Table:
        table = Table(
            title=f"{version.version_id}: {version.file_count} files, {_size(version.total_size)}",
            header_style="bold cyan",
        )
        table.add_column("Path")
        table.add_column("Class")
        table.add_column("Size", justify="right")
        table.add_column("SHA-256", style="dim")
        for entry in version.manifest[:limit]:
            table.add_row(entry.path, entry.cache_class.value, _size(entry.size), entry.hash[:12])
        if version.file_count > limit:
            table.caption = f"... and {version.file_count - limit} more"
        return table

    # ------------------------------------------------------------------
    # Invalidations
    # ------------------------------------------------------------------

    def render_plan(self, plan: InvalidationPlan) -> Panel:
        lines = [f"  {p}" for p in plan.patterns] or ["  [dim](nothing to invalidate)[/dim]"]
        lines += [
            "",
            f"[bold]Patterns:[/bold] {len(plan.patterns)}  "
            f"[bold]From paths:[/bold] {plan.raw_path_count}  "
            f"[bold]Estimated cost:[/bold] ${plan.estimated_cost:.3f}",
        ]
        if plan.collapsed_dirs:
            lines.append(f"[bold]Collapsed:[/bold] {', '.join(plan.collapsed_dirs)}")
        if plan.full:
            lines.append("[yellow]Full invalidation[/yellow]")
        return Panel("\n".join(lines), title="[bold]Invalidation plan[/bold]", border_style="blue")

    def render_history(self, entries: list[InvalidationLogEntry]) -> Table:
        table = Table(title="Invalidation history", header_style="bold cyan")
        table.add_column("ID", style="cyan")
        table.add_column("Submitted")
        table.add_column("Paths", justify="right")
        table.add_column("Cost", justify="right")
        table.add_column("Status", justify="center")
        table.add_column("Deployment", style="dim")
        for e in entries:
            table.add_row(
                e.invalidation_id,
                _ts(e.timestamp),
                str(e.path_count),
                f"${e.estimated_cost:.3f}",
                _INVALIDATION_LABELS[e.status],
                e.deployment_id or "-",
            )
        return table

    def invalidation_label(self, status: InvalidationStatus) -> str:
        return _INVALIDATION_LABELS[status]

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    def render_lease(self, lease: Lease | None, now: datetime) -> Panel:
        if lease is None:
            return Panel("[green]No deployment lease held.[/green]", title="[bold]Lease[/bold]")
        state = "[yellow]expired[/yellow]" if lease.is_expired(now) else "[bold red]held[/bold red]"
        body = "\n".join([
            f"[bold]State:[/bold]      {state}",
            f"[bold]Holder:[/bold]     {escape(lease.holder)}",
            f"[bold]Deployment:[/bold] {lease.deployment_id or '-'}",
            f"[bold]Acquired:[/bold]   {_ts(lease.acquired_at)} UTC",
            f"[bold]Expires:[/bold]    {_ts(lease.expires_at)} UTC",
            f"[bold]Lease ID:[/bold]   {lease.lease_id}",
        ])
        return Panel(body, title="[bold]Lease[/bold]", border_style="yellow")
