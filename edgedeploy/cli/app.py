"""Main Typer application — imports and registers all CLI commands.

Entry point: ``edgedeploy`` (configured via pyproject.toml scripts).

Commands: deploy, artifact, invalidate, lease, deployments.
"""

from __future__ import annotations

import typer

from edgedeploy.cli.commands.artifact import artifact_app
from edgedeploy.cli.commands.deploy import deploy_cmd
from edgedeploy.cli.commands.deployments import deployments_app
from edgedeploy.cli.commands.invalidate import invalidate_app
from edgedeploy.cli.commands.lease import lease_app
from edgedeploy.cli.context import configure_logging
from edgedeploy.config import EdgeDeploySettings

app = typer.Typer(
    name="edgedeploy",
    help="edgedeploy: versioned static-site deploys to S3 + CloudFront.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging before any command runs."""
    level = "DEBUG" if verbose else EdgeDeploySettings().log_level
    configure_logging(level)


# Register subcommands
app.command(name="deploy", help="Build, publish, invalidate and verify the site.")(deploy_cmd)
app.add_typer(artifact_app, name="artifact")
app.add_typer(invalidate_app, name="invalidate")
app.add_typer(lease_app, name="lease")
app.add_typer(deployments_app, name="deployments")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
