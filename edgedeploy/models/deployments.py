"""Deployment state machine models — deterministic transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeployState(str, Enum):
    """Strict state model for one deployment run."""

    INIT = "init"
    PREFLIGHT_CHECKED = "preflight_checked"
    BUILT = "built"
    OPTIMIZED = "optimized"
    PUBLISHED = "published"
    INVALIDATED = "invalidated"
    VERIFIED = "verified"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


# Valid state transitions — enforced structurally by DeployMachine.
# SUCCEEDED and ROLLED_BACK are terminal; FAILED only moves to ROLLED_BACK.
VALID_TRANSITIONS: dict[DeployState, set[DeployState]] = {
    DeployState.INIT: {DeployState.PREFLIGHT_CHECKED, DeployState.FAILED},
    DeployState.PREFLIGHT_CHECKED: {DeployState.BUILT, DeployState.FAILED},
    DeployState.BUILT: {DeployState.OPTIMIZED, DeployState.FAILED},
    DeployState.OPTIMIZED: {DeployState.PUBLISHED, DeployState.FAILED},
    DeployState.PUBLISHED: {DeployState.INVALIDATED, DeployState.FAILED},
    DeployState.INVALIDATED: {DeployState.VERIFIED, DeployState.FAILED},
    DeployState.VERIFIED: {DeployState.SUCCEEDED, DeployState.FAILED},
    DeployState.SUCCEEDED: set(),  # terminal
    DeployState.FAILED: {DeployState.ROLLED_BACK},
    DeployState.ROLLED_BACK: set(),  # terminal
}

# A rollback run restores files, invalidates and verifies; it ends in
# ROLLED_BACK on success or FAILED otherwise.
ROLLBACK_TRANSITIONS: dict[DeployState, set[DeployState]] = {
    DeployState.INIT: {DeployState.PUBLISHED, DeployState.FAILED},
    DeployState.PUBLISHED: {DeployState.INVALIDATED, DeployState.FAILED},
    DeployState.INVALIDATED: {DeployState.VERIFIED, DeployState.FAILED},
    DeployState.VERIFIED: {DeployState.ROLLED_BACK, DeployState.FAILED},
    DeployState.FAILED: set(),  # terminal
    DeployState.ROLLED_BACK: set(),  # terminal
}

TERMINAL_STATES: frozenset[DeployState] = frozenset(
    {DeployState.SUCCEEDED, DeployState.FAILED, DeployState.ROLLED_BACK}
)


class DeploymentStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


STATUS_FOR_STATE: dict[DeployState, DeploymentStatus] = {
    DeployState.SUCCEEDED: DeploymentStatus.SUCCESS,
    DeployState.FAILED: DeploymentStatus.FAILED,
    DeployState.ROLLED_BACK: DeploymentStatus.ROLLED_BACK,
}


class DeploymentKind(str, Enum):
    DEPLOY = "deploy"
    ROLLBACK = "rollback"


def transitions_for(kind: DeploymentKind) -> dict[DeployState, set[DeployState]]:
    return ROLLBACK_TRANSITIONS if kind == DeploymentKind.ROLLBACK else VALID_TRANSITIONS


class PhaseStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


class PhaseRecord(BaseModel):
    """Outcome of one orchestrator phase."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: PhaseStatus
    duration_ms: int = 0
    error: str | None = None
    error_kind: str | None = None  # exception class name
    detail: dict[str, Any] = {}


class Deployment(BaseModel):
    """A single execution of the orchestrator (or of a rollback).

    Frozen: every phase completion produces a new instance via
    ``model_copy``. ``DeployMachine`` owns the state field.
    """

    model_config = ConfigDict(frozen=True)

    deployment_id: str
    kind: DeploymentKind = DeploymentKind.DEPLOY
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None
    status: DeploymentStatus = DeploymentStatus.IN_PROGRESS
    state: DeployState = DeployState.INIT
    phases: list[PhaseRecord] = []
    produced_version: str | None = None
    invalidation_id: str | None = None
    warnings: list[str] = []
    dry_run: bool = False
    source_ref: str | None = None
    rollback_of: str | None = None  # deployment id this rollback repairs
    target_version: str | None = None  # rollback target

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def failed_phase(self) -> PhaseRecord | None:
        for phase in self.phases:
            if phase.status == PhaseStatus.FAILED:
                return phase
        return None

    def phase(self, name: str) -> PhaseRecord | None:
        for record in self.phases:
            if record.name == name:
                return record
        return None


class DeploymentSummary(BaseModel):
    """A row of the deployments index."""

    model_config = ConfigDict(frozen=True)

    deployment_id: str
    kind: DeploymentKind
    status: DeploymentStatus
    started_at: datetime
    finished_at: datetime | None = None
    produced_version: str | None = None
    invalidation_id: str | None = None
