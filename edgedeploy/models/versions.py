"""Version models — immutable snapshots of a published build."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from edgedeploy.models.cache import CacheClass


class ManifestEntry(BaseModel):
    """One file in a Version's manifest.

    ``path`` is relative to the site root, forward-slash separated and
    without a leading slash (``blog/index.html``).
    """

    model_config = ConfigDict(frozen=True)

    path: str
    size: int
    hash: str  # sha256 hex of the file bytes
    cache_class: CacheClass


class Version(BaseModel):
    """A captured build: never mutated, only pruned."""

    model_config = ConfigDict(frozen=True)

    version_id: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    source_ref: str | None = None
    deployment_id: str | None = None
    manifest: list[ManifestEntry] = []

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self.manifest)

    @property
    def file_count(self) -> int:
        return len(self.manifest)

    def paths(self) -> set[str]:
        """Return the set of relative paths in this version."""
        return {entry.path for entry in self.manifest}

    def entry_map(self) -> dict[str, ManifestEntry]:
        """Return ``path -> ManifestEntry`` for diffing."""
        return {entry.path: entry for entry in self.manifest}

    def summary(self) -> VersionSummary:
        return VersionSummary(
            version_id=self.version_id,
            timestamp=self.created_at,
            file_count=self.file_count,
            size=self.total_size,
            source_ref=self.source_ref,
            deployment_id=self.deployment_id,
        )


class VersionSummary(BaseModel):
    """A row of the versions index."""

    model_config = ConfigDict(frozen=True)

    version_id: str
    timestamp: datetime
    file_count: int
    size: int
    source_ref: str | None = None
    deployment_id: str | None = None


class VersionIndex(BaseModel):
    """The versions index document, newest-first.

    ``current`` names the Version the site is currently serving. Writing
    this document is the commit point for capture and prune.
    """

    model_config = ConfigDict(frozen=True)

    versions: list[VersionSummary] = []
    current: str | None = None

    def ids(self) -> list[str]:
        return [v.version_id for v in self.versions]

    def find(self, version_id: str) -> VersionSummary | None:
        for summary in self.versions:
            if summary.version_id == version_id:
                return summary
        return None
