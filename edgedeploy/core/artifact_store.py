"""Versioned, content-addressed build snapshots in an object store.

Storage layout under the state prefix::

    blobs/{sha256[0:2]}/{sha256[2:4]}/{sha256}   file bytes, deduplicated
    versions/{version_id}/manifest.json          one per retained Version
    versions/index.json                          newest-first summaries + current

Write order is blobs, then manifest, then index. The index write is the
commit point: a Version whose capture crashed before it is never listed,
and backing files of a pruned Version are deleted only after the index
stops referencing them.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TypeVar

from edgedeploy.core.cache_classifier import CacheClassifier
from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.errors import (
    ArtifactIntegrityError,
    ArtifactIOError,
    IndexConflictError,
    NotFoundError,
    ObjectNotFoundError,
    PreconditionFailedError,
)
from edgedeploy.core.hasher import (
    canonical_json_bytes,
    normalize_rel_path,
    sha256_hex,
    walk_build_dir,
)
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.versions import ManifestEntry, Version, VersionIndex, VersionSummary
from edgedeploy.providers.base import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_HEX8 = re.compile(r"^[0-9a-fA-F]{8}")

EntryLoader = Callable[[], bytes]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactStore:
    """Captures, lists, restores and prunes Versions.

    Parameters
    ----------
    store:
        The state object store.
    prefix:
        Key prefix for everything this store writes (``.edgedeploy/``).
    classifier:
        Assigns the cache class recorded in each manifest entry.
    max_versions:
        Length cap of the versions index. Versions pushed past it are
        removed like pruned ones.
    index_retries:
        Attempts at the optimistic index read-modify-write before
        ``IndexConflictError``.
    clock:
        Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        prefix: str = ".edgedeploy/",
        classifier: CacheClassifier | None = None,
        max_versions: int = 50,
        index_retries: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._classifier = classifier or CacheClassifier()
        self._max_versions = max_versions
        self._index_retries = index_retries
        self._clock = clock

    @classmethod
    def from_config(cls, store: ObjectStore, config: DeploymentConfig) -> ArtifactStore:
        return cls(
            store,
            prefix=config.state_prefix,
            classifier=CacheClassifier(config),
            max_versions=config.retention_max_versions,
        )

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @property
    def index_key(self) -> str:
        return f"{self._prefix}versions/index.json"

    def manifest_key(self, version_id: str) -> str:
        return f"{self._prefix}versions/{version_id}/manifest.json"

    def blob_key(self, digest: str) -> str:
        return f"{self._prefix}blobs/{digest[:2]}/{digest[2:4]}/{digest}"

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def capture(
        self,
        build_dir: Path,
        *,
        source_ref: str | None = None,
        deployment_id: str | None = None,
        make_current: bool = False,
        cancel: CancelToken | None = None,
    ) -> Version:
        """Snapshot every file under *build_dir* as a new Version.

        Raises ``ArtifactIOError`` if the tree is empty or unreadable.
        """
        files = walk_build_dir(build_dir)
        return self.capture_entries(
            [(f.rel_path, f.read_bytes) for f in files],
            source_ref=source_ref,
            deployment_id=deployment_id,
            make_current=make_current,
            cancel=cancel,
        )

    def capture_entries(
        self,
        entries: Iterable[tuple[str, EntryLoader]],
        *,
        source_ref: str | None = None,
        deployment_id: str | None = None,
        make_current: bool = False,
        pinned: Iterable[str] = (),
        cancel: CancelToken | None = None,
    ) -> Version:
        """Snapshot arbitrary ``(path, loader)`` pairs as a new Version.

        Versions named in *pinned* survive the index cap like the current
        one does.
        """
        existing = self._blob_keys()
        loaders: dict[str, EntryLoader] = {}
        manifest: list[ManifestEntry] = []
        for path, loader in entries:
            if cancel is not None:
                cancel.raise_if_cancelled()
            rel = normalize_rel_path(path)
            try:
                data = loader()
            except OSError as exc:
                raise ArtifactIOError(f"Cannot read {rel}: {exc}") from exc
            digest = sha256_hex(data)
            loaders.setdefault(digest, loader)
            key = self.blob_key(digest)
            if key not in existing:
                self._store.put_object(
                    key, data, headers={"Content-Type": "application/octet-stream"}
                )
                existing.add(key)
            manifest.append(
                ManifestEntry(
                    path=rel,
                    size=len(data),
                    hash=digest,
                    cache_class=self._classifier.cache_class(rel),
                )
            )
        if not manifest:
            raise ArtifactIOError("Nothing to capture: no files")
        manifest.sort(key=lambda e: e.path)

        created_at = self._clock()
        version = Version(
            version_id=self._new_version_id(created_at, source_ref, manifest),
            created_at=created_at,
            source_ref=source_ref,
            deployment_id=deployment_id,
            manifest=manifest,
        )
        if self._exists(self.manifest_key(version.version_id)):
            raise IndexConflictError(f"Version id already in use: {version.version_id}")
        self._store.put_object(
            self.manifest_key(version.version_id),
            canonical_json_bytes(version.model_dump(mode="json")),
            headers={"Content-Type": "application/json"},
        )

        self._restore_missing_blobs(loaders)
        pinned_ids = set(pinned)

        def _add(index: VersionIndex) -> tuple[VersionIndex, list[str]]:
            if index.find(version.version_id) is not None:
                raise IndexConflictError(f"Version id already indexed: {version.version_id}")
            current = version.version_id if make_current else index.current
            versions = [version.summary(), *index.versions]
            kept, overflow = self._apply_cap(versions, {current, *pinned_ids})
            return VersionIndex(versions=kept, current=current), overflow

        overflow = self._update_index(_add)
        logger.info(
            "Captured version %s (%d files, %d bytes)",
            version.version_id,
            version.file_count,
            version.total_size,
        )
        if overflow:
            self._delete_backing(overflow)
        return version

    def _blob_keys(self) -> set[str]:
        return {o.key for o in self._store.list_objects(f"{self._prefix}blobs/")}

    def _restore_missing_blobs(self, loaders: dict[str, EntryLoader]) -> None:
        """Re-upload blobs a concurrent prune deleted while this capture ran."""
        present = self._blob_keys()
        for digest, loader in sorted(loaders.items()):
            key = self.blob_key(digest)
            if key in present:
                continue
            try:
                data = loader()
            except OSError as exc:
                raise ArtifactIOError(f"Cannot re-read blob {digest}: {exc}") from exc
            if sha256_hex(data) != digest:
                raise ArtifactIntegrityError(f"Content changed during capture ({digest})")
            logger.warning("Blob %s disappeared during capture; uploading it again", digest)
            self._store.put_object(
                key, data, headers={"Content-Type": "application/octet-stream"}
            )

    def _new_version_id(
        self, created_at: datetime, source_ref: str | None, manifest: list[ManifestEntry]
    ) -> str:
        if source_ref and _HEX8.match(source_ref):
            suffix = source_ref[:8].lower()
        else:
            suffix = sha256_hex(
                canonical_json_bytes([e.model_dump(mode="json") for e in manifest])
            )[:8]
        return f"v{created_at.astimezone(timezone.utc):%Y%m%d%H%M%S%f}-{suffix}"

    def _apply_cap(
        self, versions: list[VersionSummary], keep: set[str | None]
    ) -> tuple[list[VersionSummary], list[str]]:
        if len(versions) <= self._max_versions:
            return versions, []
        kept = versions[: self._max_versions]
        overflow: list[str] = []
        for summary in versions[self._max_versions:]:
            if summary.version_id in keep:
                kept.append(summary)
            else:
                overflow.append(summary.version_id)
        return kept, overflow

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def index(self) -> VersionIndex:
        return self._read_index()[0]

    def list(self, limit: int | None = None) -> list[VersionSummary]:
        """Committed Versions, newest first."""
        versions = self.index().versions
        return versions[:limit] if limit is not None else list(versions)

    def get(self, version_id: str) -> Version:
        """Load a committed Version; ``NotFoundError`` if pruned or unknown."""
        if self.index().find(version_id) is None:
            raise NotFoundError(f"Version not found: {version_id}")
        return self._load_manifest(version_id)

    def latest(self) -> Version | None:
        versions = self.index().versions
        return self._load_manifest(versions[0].version_id) if versions else None

    def current(self) -> Version | None:
        """The Version the site is serving, per the index."""
        current = self.index().current
        return self._load_manifest(current) if current else None

    def read_file(self, entry: ManifestEntry) -> bytes:
        """Bytes of one manifest entry, verified against its hash."""
        data = self._store.get_object(self.blob_key(entry.hash)).data
        if sha256_hex(data) != entry.hash:
            raise ArtifactIntegrityError(
                f"Blob for {entry.path} failed integrity check ({entry.hash})"
            )
        return data

    def _load_manifest(self, version_id: str) -> Version:
        try:
            obj = self._store.get_object(self.manifest_key(version_id))
        except ObjectNotFoundError as exc:
            raise NotFoundError(f"Manifest missing for version {version_id}") from exc
        return Version.model_validate_json(obj.data)

    def _exists(self, key: str) -> bool:
        try:
            self._store.get_object_metadata(key)
        except ObjectNotFoundError:
            return False
        return True

    # ------------------------------------------------------------------
    # Mutate
    # ------------------------------------------------------------------

    def set_current(self, version_id: str) -> None:
        def _point(index: VersionIndex) -> tuple[VersionIndex, None]:
            if index.find(version_id) is None:
                raise NotFoundError(f"Version not found: {version_id}")
            return index.model_copy(update={"current": version_id}), None

        self._update_index(_point)
        logger.info("Current version is now %s", version_id)

    def remove(self, version_id: str) -> None:
        """Drop one Version from the index, then its backing files."""

        def _drop(index: VersionIndex) -> tuple[VersionIndex, None]:
            if index.find(version_id) is None:
                raise NotFoundError(f"Version not found: {version_id}")
            if index.current == version_id:
                raise ValueError(f"Cannot remove the current version {version_id}")
            kept = [v for v in index.versions if v.version_id != version_id]
            return index.model_copy(update={"versions": kept}), None

        self._update_index(_drop)
        self._delete_backing([version_id])

    def prune(
        self,
        max_age: timedelta,
        max_count: int,
        *,
        min_keep: int | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """Apply retention; return the removed version ids.

        Everything beyond the *max_count* newest is removed. Of the rest,
        versions older than *max_age* are removed while at least
        *min_keep* (default: *max_count*) remain. The current Version is
        never removed.
        """
        floor = max_count if min_keep is None else min(min_keep, max_count)
        now = now or self._clock()

        def _select(index: VersionIndex) -> tuple[VersionIndex, list[str]]:
            ordered = sorted(
                index.versions, key=lambda v: (v.timestamp, v.version_id), reverse=True
            )
            kept = ordered[:max_count]
            removed = ordered[max_count:]
            for summary in reversed(list(kept)):
                if len(kept) <= floor:
                    break
                if now - summary.timestamp > max_age:
                    kept.remove(summary)
                    removed.append(summary)
            for summary in list(removed):
                if summary.version_id == index.current:
                    removed.remove(summary)
                    kept.append(summary)
            kept.sort(key=lambda v: (v.timestamp, v.version_id), reverse=True)
            return (
                VersionIndex(versions=kept, current=index.current),
                [v.version_id for v in removed],
            )

        removed_ids = self._update_index(_select)
        if removed_ids:
            logger.info("Pruned %d version(s): %s", len(removed_ids), ", ".join(removed_ids))
            self._delete_backing(removed_ids)
        return removed_ids

    # ------------------------------------------------------------------
    # Index read-modify-write
    # ------------------------------------------------------------------

    def _read_index(self) -> tuple[VersionIndex, str | None]:
        try:
            obj = self._store.get_object(self.index_key)
        except ObjectNotFoundError:
            return VersionIndex(), None
        return VersionIndex.model_validate_json(obj.data), obj.etag

    def _update_index(self, mutate: Callable[[VersionIndex], tuple[VersionIndex, T]]) -> T:
        for attempt in range(1, self._index_retries + 1):
            index, etag = self._read_index()
            updated, result = mutate(index)
            data = canonical_json_bytes(updated.model_dump(mode="json"))
            try:
                if etag is None:
                    self._store.put_object(
                        self.index_key,
                        data,
                        headers={"Content-Type": "application/json"},
                        if_none_match=True,
                    )
                else:
                    self._store.put_object(
                        self.index_key,
                        data,
                        headers={"Content-Type": "application/json"},
                        if_match=etag,
                    )
            except PreconditionFailedError:
                logger.warning(
                    "Version index changed concurrently (attempt %d/%d); re-reading",
                    attempt,
                    self._index_retries,
                )
                continue
            return result
        raise IndexConflictError(
            f"Version index update conflicted {self._index_retries} times"
        )

    def _delete_backing(self, version_ids: list[str]) -> None:
        """Delete manifests, then blobs no remaining Version references."""
        candidates: set[str] = set()
        for version_id in version_ids:
            try:
                candidates.update(e.hash for e in self._load_manifest(version_id).manifest)
            except NotFoundError:
                logger.debug("Manifest for %s already gone", version_id)
            self._store.delete_object(self.manifest_key(version_id))

        if not candidates:
            return
        referenced: set[str] = set()
        for summary in self.index().versions:
            try:
                referenced.update(
                    e.hash for e in self._load_manifest(summary.version_id).manifest
                )
            except NotFoundError:
                logger.warning("Indexed version %s has no manifest", summary.version_id)
        orphaned = candidates - referenced
        for digest in sorted(orphaned):
            self._store.delete_object(self.blob_key(digest))
        logger.debug("Deleted %d unreferenced blob(s)", len(orphaned))
