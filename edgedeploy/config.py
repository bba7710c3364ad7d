"""Process configuration — env-driven, read once at startup.

``EdgeDeploySettings`` is the only place the process environment is read.
It reads ``EDGEDEPLOY_*`` variables and an optional ``.env`` file, and
``to_deployment_config()`` turns the result into the frozen
``DeploymentConfig`` that every component receives.

Examples
--------
Override via environment::

    export EDGEDEPLOY_BACKEND=aws
    export EDGEDEPLOY_BUCKET=www-example-com
    export EDGEDEPLOY_DISTRIBUTION_ID=E2EXAMPLE
    export EDGEDEPLOY_SITE_URL=https://www.example.com/

List-valued settings take JSON::

    export EDGEDEPLOY_BUILD_COMMAND='["npm", "run", "build"]'
"""

from __future__ import annotations

import getpass
import os
import socket

from pydantic_settings import BaseSettings, SettingsConfigDict

from edgedeploy.models.config import DeploymentConfig, DeploymentFields


class EdgeDeploySettings(BaseSettings, DeploymentFields):
    """Environment overrides for every ``DeploymentConfig`` field."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="EDGEDEPLOY_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    def to_deployment_config(self) -> DeploymentConfig:
        """Build the frozen config passed into every component."""
        data = self.model_dump(exclude={"log_level"})
        data["lease_holder"] = self.lease_holder or default_holder()
        return DeploymentConfig(**data)


def default_holder() -> str:
    """``user@host:pid`` of this process, recorded on the lease."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname() or 'unknown-host'}:{os.getpid()}"


def load_config() -> tuple[EdgeDeploySettings, DeploymentConfig]:
    """Read settings once and derive the deployment config."""
    settings = EdgeDeploySettings()
    return settings, settings.to_deployment_config()
