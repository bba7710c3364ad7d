"""Pre-flight: verify the environment before anything is built or written.

Credentials, object-store reachability and CDN distribution reachability
are checked in that order, then any configured pre-flight commands run.
Every failure is fatal and never retried.
"""

from __future__ import annotations

import logging
from typing import Any

from edgedeploy.checks.commands import run_command
from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.errors import DeployEnvironmentError, TransientProviderError
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.providers import Providers

logger = logging.getLogger(__name__)


def validate_config(config: DeploymentConfig) -> None:
    """Reject configurations that cannot possibly deploy."""
    if config.backend == "aws":
        if not config.bucket:
            raise DeployEnvironmentError("No bucket configured (EDGEDEPLOY_BUCKET)")
        if not config.distribution_id:
            raise DeployEnvironmentError(
                "No CloudFront distribution configured (EDGEDEPLOY_DISTRIBUTION_ID)"
            )
    if not config.state_prefix.endswith("/"):
        raise DeployEnvironmentError(
            f"state_prefix must end with '/': {config.state_prefix!r}"
        )


def check_environment(
    providers: Providers,
    config: DeploymentConfig,
    *,
    cancel: CancelToken | None = None,
) -> dict[str, Any]:
    """Run every environment check; return details for the phase record."""
    validate_config(config)
    try:
        identity = providers.credential_check()
        logger.info("Credentials OK: %s", identity)
        if cancel is not None:
            cancel.raise_if_cancelled()

        providers.site_store.check_access()
        if providers.state_store is not providers.site_store:
            providers.state_store.check_access()
        logger.info("Object store reachable")
        if cancel is not None:
            cancel.raise_if_cancelled()

        providers.cdn.check_access(config.distribution_id)
        logger.info("CDN distribution %s reachable", config.distribution_id or "(local)")
    except TransientProviderError as exc:
        raise DeployEnvironmentError(f"Provider unreachable during pre-flight: {exc}") from exc

    for argv in config.preflight_commands:
        run_command(argv, cwd=config.project_dir, cancel=cancel)

    return {
        "identity": identity,
        "commands": len(config.preflight_commands),
    }
