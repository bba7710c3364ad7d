"""edgedeploy data models — all Pydantic v2, all frozen (immutable)."""

from edgedeploy.models.cache import CacheClass, CachePolicy
from edgedeploy.models.config import DeploymentConfig, DeploymentFields
from edgedeploy.models.deployments import (
    ROLLBACK_TRANSITIONS,
    STATUS_FOR_STATE,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    Deployment,
    DeploymentKind,
    DeploymentStatus,
    DeploymentSummary,
    DeployState,
    PhaseRecord,
    PhaseStatus,
    transitions_for,
)
from edgedeploy.models.invalidations import (
    Invalidation,
    InvalidationLogEntry,
    InvalidationPlan,
    InvalidationStatus,
)
from edgedeploy.models.lease import Lease
from edgedeploy.models.versions import (
    ManifestEntry,
    Version,
    VersionIndex,
    VersionSummary,
)

__all__ = [
    # cache
    "CacheClass",
    "CachePolicy",
    # config
    "DeploymentConfig",
    "DeploymentFields",
    # deployments
    "DeployState",
    "DeploymentStatus",
    "DeploymentKind",
    "Deployment",
    "DeploymentSummary",
    "PhaseRecord",
    "PhaseStatus",
    "VALID_TRANSITIONS",
    "ROLLBACK_TRANSITIONS",
    "transitions_for",
    "TERMINAL_STATES",
    "STATUS_FOR_STATE",
    # invalidations
    "InvalidationStatus",
    "InvalidationPlan",
    "Invalidation",
    "InvalidationLogEntry",
    # lease
    "Lease",
    # versions
    "ManifestEntry",
    "Version",
    "VersionSummary",
    "VersionIndex",
]
