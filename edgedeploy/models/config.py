"""Deployment configuration model.

Constructed once at process start (see ``edgedeploy.config``) and passed
into every component. No component reads the process environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict


class DeploymentFields(BaseModel):
    """Every deployment setting with its default.

    Shared by ``DeploymentConfig`` and ``edgedeploy.config.EdgeDeploySettings``.
    """

    site_name: str = "site"

    # Providers
    backend: Literal["aws", "local"] = "local"
    bucket: str = ""
    site_prefix: str = ""
    state_bucket: str | None = None  # defaults to ``bucket``
    state_prefix: str = ".edgedeploy/"
    distribution_id: str = ""
    region: str = "us-east-1"
    local_site_dir: Path = Path(".edgedeploy-local/site")
    local_state_dir: Path = Path(".edgedeploy-local/state")

    # Build and external collaborators (argument vectors, run without a shell)
    project_dir: Path = Path(".")
    build_dir: Path = Path("out")
    build_command: list[str] = ["npm", "run", "build"]
    optimize_commands: list[list[str]] = []
    preflight_commands: list[list[str]] = []
    build_timeout_seconds: int = 900
    phase_timeout_seconds: int = 1800

    # Verification
    site_url: str | None = None
    verify_timeout_seconds: float = 10.0

    # Publish
    upload_concurrency: int = 8
    delete_removed: bool = False

    # Retry policy (shared by uploads and invalidation submission)
    retry_max_attempts: int = 5
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0

    # Invalidation
    max_invalidation_paths: int = 3000
    wildcard_threshold: int = 5
    invalidation_tier_size: int = 1000
    invalidation_rate_first_tier: float = 0.005
    invalidation_rate_second_tier: float = 0.001
    invalidation_poll_seconds: float = 30.0
    invalidation_max_wait_seconds: float = 900.0
    invalidation_history_limit: int = 100
    wait_for_invalidation: bool = True

    # Retention
    retention_max_versions: int = 50
    retention_max_age_days: int = 30
    retention_min_keep: int = 5
    prune_after_deploy: bool = True

    # Cache TTLs
    document_max_age: int = 600
    manifest_max_age: int = 86400
    immutable_max_age: int = 31536000

    # Mutual exclusion
    lease_ttl_seconds: int = 1800
    lease_holder: str | None = None  # recorded on the lease; settings fill in user@host

    # Failure policy: rollback is operator-triggered unless enabled here.
    auto_rollback_on_failure: bool = False


class DeploymentConfig(DeploymentFields):
    """Everything a deployment needs to know about its target and policy."""

    model_config = ConfigDict(frozen=True)

    @property
    def effective_state_bucket(self) -> str:
        return self.state_bucket or self.bucket

    @property
    def shares_site_bucket(self) -> bool:
        """Whether state objects live in the same bucket as the site."""
        if self.backend == "local":
            return self.local_state_dir.resolve() == self.local_site_dir.resolve()
        return self.effective_state_bucket == self.bucket

    @property
    def resolved_build_dir(self) -> Path:
        if self.build_dir.is_absolute():
            return self.build_dir
        return self.project_dir / self.build_dir
