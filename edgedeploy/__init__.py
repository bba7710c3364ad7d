"""edgedeploy: versioned static-site deploys to an object store behind a CDN.

  - Per-file cache policy (documents revalidate, hashed assets are immutable)
  - Content-addressed Version snapshots with a crash-safe index commit
  - Incremental publish: only changed files are uploaded
  - Cost-bounded CDN invalidation (directory wildcards, tiered pricing)
  - Deterministic deployment state machine with an advisory lease
  - One-command rollback to any retained Version
"""

__version__ = "0.3.0"
__description__ = "Versioned static-site deployment to S3 + CloudFront"

from edgedeploy.core.orchestrator import DeploymentOrchestrator
from edgedeploy.cli.app import app as cli

__all__ = ["DeploymentOrchestrator", "cli", "__version__"]
