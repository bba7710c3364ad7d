"""CDN invalidation models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class InvalidationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (InvalidationStatus.COMPLETED, InvalidationStatus.FAILED)


class InvalidationPlan(BaseModel):
    """A cost-bounded set of invalidation patterns.

    ``estimated_cost`` is always computed from ``len(patterns)``, the
    post-collapse count, never from ``raw_path_count``.
    """

    model_config = ConfigDict(frozen=True)

    patterns: list[str] = []
    estimated_cost: float = 0.0
    raw_path_count: int = 0
    collapsed_dirs: list[str] = []
    full: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.patterns


class Invalidation(BaseModel):
    """One CDN cache-invalidation request. Immutable once terminal."""

    model_config = ConfigDict(frozen=True)

    invalidation_id: str
    distribution_id: str
    requested_paths: list[str]
    estimated_cost: float
    status: InvalidationStatus = InvalidationStatus.PENDING
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    completed_at: datetime | None = None
    caller_reference: str = ""


class InvalidationLogEntry(BaseModel):
    """One row of the capped invalidation history log."""

    model_config = ConfigDict(frozen=True)

    invalidation_id: str
    timestamp: datetime
    path_count: int
    estimated_cost: float
    status: InvalidationStatus
    deployment_id: str | None = None
    paths: list[str] = []  # first few patterns, for reference
