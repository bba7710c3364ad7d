"""Diff a build tree against the previous Version and upload what changed.

Only new or changed files are uploaded, each tagged with the headers of
its cache class and the sha256 of its bytes. Untouched objects keep their
existing headers. The changed-path list returned here is the input to
invalidation planning.

Uploads run on a bounded thread pool, each wrapped by the shared retry
policy. Publishing is all-or-nothing from the caller's side: the first
upload that exhausts its retries aborts the rest and raises
``PublishError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from edgedeploy.core.cache_classifier import CacheClassifier
from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.errors import PublishError
from edgedeploy.core.hasher import sha256_file, walk_build_dir
from edgedeploy.core.retry import RetryExhaustedError, RetryPolicy
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.versions import ManifestEntry, Version
from edgedeploy.providers.base import CONTENT_HASH_HEADER, ObjectStore

logger = logging.getLogger(__name__)


class PublishResult(BaseModel):
    """What a publish did (or, for ``plan``, would do).

    ``uploaded`` and ``removed`` are site-relative paths; ``changed_paths``
    are URL paths with a leading slash, ready for invalidation planning.
    """

    model_config = ConfigDict(frozen=True)

    uploaded: list[str] = []
    changed_paths: list[str] = []
    removed: list[str] = []
    unchanged: int = 0
    manifest: list[ManifestEntry] = []
    dry_run: bool = False


@dataclass(frozen=True)
class UploadItem:
    rel_path: str
    load: Callable[[], bytes]
    digest: str


class PublishEngine:
    """Uploads changed files to the site store.

    Parameters
    ----------
    store:
        The object store serving the site.
    config:
        Site prefix, upload concurrency, delete policy and the key prefix
        of state objects that may share the bucket.
    classifier:
        Cache policy per path.
    retry:
        Shared retry policy for individual uploads and deletes.
    """

    def __init__(
        self,
        store: ObjectStore,
        config: DeploymentConfig,
        *,
        classifier: CacheClassifier | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._classifier = classifier or CacheClassifier(config)
        self._retry = retry or RetryPolicy.from_config(config)

    def site_key(self, rel_path: str) -> str:
        return f"{self._config.site_prefix}{rel_path}"

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    def plan(self, build_dir: Path, previous: Version | None = None) -> PublishResult:
        """Compute the publish diff without writing anything."""
        items, manifest, removed, unchanged = self._diff(build_dir, previous)
        deleted = removed if self._config.delete_removed else []
        return PublishResult(
            uploaded=[item.rel_path for item in items],
            changed_paths=_url_paths([i.rel_path for i in items] + deleted),
            removed=deleted,
            unchanged=unchanged,
            manifest=manifest,
            dry_run=True,
        )

    def _diff(
        self, build_dir: Path, previous: Version | None
    ) -> tuple[list[UploadItem], list[ManifestEntry], list[str], int]:
        files = walk_build_dir(build_dir)
        before = previous.entry_map() if previous is not None else {}
        items: list[UploadItem] = []
        manifest: list[ManifestEntry] = []
        unchanged = 0
        for f in files:
            digest = sha256_file(f.abs_path)
            manifest.append(
                ManifestEntry(
                    path=f.rel_path,
                    size=f.size,
                    hash=digest,
                    cache_class=self._classifier.cache_class(f.rel_path),
                )
            )
            old = before.get(f.rel_path)
            if old is not None and old.hash == digest:
                unchanged += 1
                continue
            items.append(UploadItem(f.rel_path, f.read_bytes, digest))
        present = {f.rel_path for f in files}
        removed = sorted(p for p in before if p not in present)
        return items, manifest, removed, unchanged

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self,
        build_dir: Path,
        previous: Version | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> PublishResult:
        """Upload new and changed files from *build_dir*.

        Raises ``PublishError`` once any upload exhausts its retries.
        """
        items, manifest, removed, unchanged = self._diff(build_dir, previous)
        logger.info(
            "Publishing %d changed file(s), %d unchanged, %d removed from build",
            len(items),
            unchanged,
            len(removed),
        )
        uploaded = self.upload_entries(items, cancel=cancel)
        deleted: list[str] = []
        if self._config.delete_removed and removed:
            deleted = self.delete_paths(removed, cancel=cancel)
        return PublishResult(
            uploaded=uploaded,
            changed_paths=_url_paths(uploaded + deleted),
            removed=deleted,
            unchanged=unchanged,
            manifest=manifest,
        )

    def upload_entries(
        self, items: Iterable[UploadItem], *, cancel: CancelToken | None = None
    ) -> list[str]:
        """Upload every item concurrently; return the uploaded paths, sorted."""
        items = list(items)
        if not items:
            return []
        abort = cancel.child() if cancel is not None else CancelToken()
        workers = max(1, min(self._config.upload_concurrency, len(items)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="edgedeploy-upload") as pool:
            futures = [pool.submit(self._upload_one, item, abort) for item in items]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            failed = next((f for f in done if f.exception() is not None), None)
            if failed is not None:
                abort.cancel("publish aborted")
                for future in pending:
                    future.cancel()
                exc = failed.exception()
                if isinstance(exc, RetryExhaustedError):
                    raise PublishError(f"Upload failed: {exc}") from exc
                raise exc  # type: ignore[misc]
        return sorted(item.rel_path for item in items)

    def _upload_one(self, item: UploadItem, cancel: CancelToken) -> str:
        cancel.raise_if_cancelled()
        key = self.site_key(item.rel_path)
        data = item.load()
        headers = self._classifier.classify(item.rel_path).headers()
        headers[CONTENT_HASH_HEADER] = item.digest
        self._retry.call(
            lambda: self._store.put_object(key, data, headers=headers),
            description=f"upload {key}",
            cancel=cancel,
        )
        logger.debug("Uploaded %s (%s)", key, headers["Cache-Control"])
        return item.rel_path

    def delete_paths(
        self, rel_paths: Iterable[str], *, cancel: CancelToken | None = None
    ) -> list[str]:
        deleted: list[str] = []
        for rel in rel_paths:
            if cancel is not None:
                cancel.raise_if_cancelled()
            key = self.site_key(rel)
            try:
                self._retry.call(
                    lambda: self._store.delete_object(key),
                    description=f"delete {key}",
                    cancel=cancel,
                )
            except RetryExhaustedError as exc:
                raise PublishError(f"Delete failed: {exc}") from exc
            deleted.append(rel)
        if deleted:
            logger.info("Deleted %d file(s) from the site", len(deleted))
        return deleted

    # ------------------------------------------------------------------
    # Served state
    # ------------------------------------------------------------------

    def served_state(self) -> dict[str, str | None]:
        """``path -> sha256`` of what the site store is serving.

        Objects without a content-hash header map to ``None``.
        """
        prefix = self._config.site_prefix
        state_prefix = self._config.state_prefix if self._config.shares_site_bucket else None
        served: dict[str, str | None] = {}
        for obj in self._store.list_objects(prefix):
            if state_prefix and obj.key.startswith(state_prefix):
                continue
            rel = obj.key[len(prefix):]
            if not rel:
                continue
            headers = self._store.get_object_metadata(obj.key)
            served[rel] = headers.get(CONTENT_HASH_HEADER)
        return served


def _url_paths(rel_paths: Iterable[str]) -> list[str]:
    return sorted({"/" + p for p in rel_paths})
