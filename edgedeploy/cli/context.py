"""Shared CLI plumbing: logging setup, component wiring, exit codes."""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.logging import RichHandler

from edgedeploy.config import load_config
from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.orchestrator import DeploymentOrchestrator
from edgedeploy.models.deployments import Deployment, DeploymentKind, DeploymentStatus
from edgedeploy.providers import build_providers

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_WARNINGS = 2


def configure_logging(level: str) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                rich_tracebacks=True,
                markup=False,
            )
        ],
        force=True,
    )
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)


def load_orchestrator() -> DeploymentOrchestrator:
    """Build the orchestrator from the process environment."""
    _, config = load_config()
    return DeploymentOrchestrator(config, build_providers(config))


def exit_code_for(deployment: Deployment) -> int:
    """0 success, 2 success with warnings, 1 anything else."""
    succeeded = deployment.status == DeploymentStatus.SUCCESS or (
        deployment.kind == DeploymentKind.ROLLBACK
        and deployment.status == DeploymentStatus.ROLLED_BACK
    )
    if not succeeded:
        return EXIT_FAILED
    return EXIT_WARNINGS if deployment.warnings else EXIT_OK


@contextmanager
def cancel_on_interrupt() -> Iterator[CancelToken]:
    """Yield a token that SIGINT/SIGTERM cancel instead of killing the run."""
    token = CancelToken()

    def _handler(signum: int, frame: object) -> None:
        token.cancel(f"received {signal.Signals(signum).name}")

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
