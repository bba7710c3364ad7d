"""Tests for ArtifactStore — capture, content addressing, commit point, retention."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from edgedeploy.core.artifact_store import ArtifactStore
from edgedeploy.core.errors import (
    ArtifactIntegrityError,
    ArtifactIOError,
    IndexConflictError,
    NotFoundError,
    PreconditionFailedError,
    TransientProviderError,
)
from edgedeploy.core.hasher import sha256_hex
from edgedeploy.models.cache import CacheClass


class Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def store(state_store, clock) -> ArtifactStore:
    return ArtifactStore(state_store, clock=clock)


def _capture_series(store, write_build, clock, count, *, step_days=1.0):
    """Capture *count* distinct builds, one per *step_days*, oldest first."""
    ids = []
    for i in range(count):
        build = write_build({"index.html": f"<html>{i}</html>", "app.js": "shared"})
        ids.append(store.capture(build).version_id)
        clock.advance(days=step_days)
    return ids


class TestCapture:
    def test_capture_writes_blobs_manifest_and_index(self, store, state_store, write_build, site_v1):
        version = store.capture(write_build(site_v1), source_ref="main")
        assert version.file_count == 4
        assert version.total_size == sum(len(str(v)) for v in site_v1.values())
        for entry in version.manifest:
            assert store.blob_key(entry.hash) in state_store.objects
        assert store.manifest_key(version.version_id) in state_store.objects
        assert store.list()[0].version_id == version.version_id

    def test_blob_layout(self, store):
        digest = sha256_hex(b"x")
        assert store.blob_key(digest) == f".edgedeploy/blobs/{digest[:2]}/{digest[2:4]}/{digest}"

    def test_manifest_entries_carry_cache_class(self, store, write_build, site_v1):
        version = store.capture(write_build(site_v1))
        classes = {e.path: e.cache_class for e in version.manifest}
        assert classes["index.html"] == CacheClass.DOCUMENT
        assert classes["app.3f2a1b.js"] == CacheClass.IMMUTABLE_ASSET

    def test_manifest_is_sorted(self, store, write_build):
        version = store.capture(write_build({"z.html": "z", "a/b.html": "b", "m.css": "m"}))
        assert [e.path for e in version.manifest] == ["a/b.html", "m.css", "z.html"]

    def test_identical_content_is_stored_once(self, store, state_store, write_build, clock, site_v1):
        store.capture(write_build(site_v1))
        blob_puts = [k for k in state_store.put_log if "/blobs/" in k]
        clock.advance(minutes=1)
        store.capture(write_build(site_v1))
        assert [k for k in state_store.put_log if "/blobs/" in k] == blob_puts

    def test_version_id_uses_hex_source_ref(self, store, write_build):
        version = store.capture(write_build({"index.html": "x"}), source_ref="ABCDEF1234567")
        assert version.version_id.startswith("v20260301120000")
        assert version.version_id.endswith("-abcdef12")

    def test_version_id_falls_back_to_manifest_hash(self, store, write_build):
        version = store.capture(write_build({"index.html": "x"}), source_ref="release-7")
        suffix = version.version_id.rsplit("-", 1)[1]
        assert len(suffix) == 8
        int(suffix, 16)

    def test_same_id_twice_conflicts(self, store, write_build):
        build = write_build({"index.html": "x"})
        store.capture(build)
        with pytest.raises(IndexConflictError):
            store.capture(build)

    def test_make_current(self, store, write_build, clock):
        first = store.capture(write_build({"index.html": "1"}), make_current=True)
        clock.advance(minutes=1)
        store.capture(write_build({"index.html": "2"}))
        assert store.index().current == first.version_id
        assert store.current().version_id == first.version_id
        assert store.latest().version_id != first.version_id

    def test_empty_build_dir(self, store, build_dir):
        build_dir.mkdir()
        with pytest.raises(ArtifactIOError, match="empty"):
            store.capture(build_dir)

    def test_missing_build_dir(self, store, tmp_path):
        with pytest.raises(ArtifactIOError, match="not found"):
            store.capture(tmp_path / "nope")

    def test_unreadable_entry(self, store):
        def _boom() -> bytes:
            raise OSError("permission denied")

        with pytest.raises(ArtifactIOError, match="permission denied"):
            store.capture_entries([("index.html", _boom)])


class TestCommitPoint:
    def test_crash_before_manifest_leaves_nothing_listed(self, store, state_store, write_build, site_v1):
        state_store.fail_puts("manifest.json", error=TransientProviderError)
        with pytest.raises(TransientProviderError):
            store.capture(write_build(site_v1))
        assert store.list() == []

    def test_crash_before_index_leaves_nothing_listed(self, store, state_store, write_build, site_v1):
        state_store.fail_puts("versions/index.json", error=TransientProviderError)
        with pytest.raises(TransientProviderError):
            store.capture(write_build(site_v1))
        assert store.list() == []
        assert store.current() is None

    def test_index_write_retries_on_conflict(self, store, state_store, write_build):
        state_store.fail_puts("versions/index.json", times=2, error=PreconditionFailedError)
        version = store.capture(write_build({"index.html": "x"}))
        assert store.list()[0].version_id == version.version_id

    def test_index_conflict_gives_up(self, state_store, write_build, clock):
        store = ArtifactStore(state_store, clock=clock, index_retries=3)
        state_store.fail_puts("versions/index.json", times=3, error=PreconditionFailedError)
        with pytest.raises(IndexConflictError):
            store.capture(write_build({"index.html": "x"}))


class TestRead:
    def test_get_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.get("v0-deadbeef")

    def test_read_file_roundtrip(self, store, write_build, site_v1):
        version = store.capture(write_build(site_v1))
        entry = version.entry_map()["index.html"]
        assert store.read_file(entry) == b"<html><body>v1</body></html>"

    def test_read_file_detects_corruption(self, store, state_store, write_build, site_v1):
        version = store.capture(write_build(site_v1))
        entry = version.entry_map()["index.html"]
        key = store.blob_key(entry.hash)
        state_store.objects[key] = (b"tampered", {})
        with pytest.raises(ArtifactIntegrityError):
            store.read_file(entry)

    def test_list_limit(self, store, write_build, clock):
        _capture_series(store, write_build, clock, 4)
        assert len(store.list(2)) == 2
        assert len(store.list()) == 4


class TestRetention:
    def test_prune_ten_to_five(self, store, state_store, write_build, clock):
        ids = _capture_series(store, write_build, clock, 10)
        removed = store.prune(timedelta(days=365), 5)
        assert sorted(removed) == sorted(ids[:5])
        assert [v.version_id for v in store.list()] == list(reversed(ids[5:]))
        for version_id in ids[:5]:
            assert store.manifest_key(version_id) not in state_store.objects
            with pytest.raises(NotFoundError):
                store.get(version_id)

    def test_prune_by_age_respects_min_keep(self, store, write_build, clock):
        clock.advance(days=-60)
        ids = _capture_series(store, write_build, clock, 10)
        removed = store.prune(timedelta(days=30), 50, min_keep=3, now=NOW)
        assert len(removed) == 7
        assert [v.version_id for v in store.list()] == list(reversed(ids[-3:]))

    def test_prune_keeps_recent_versions(self, store, write_build, clock):
        _capture_series(store, write_build, clock, 5, step_days=0.1)
        assert store.prune(timedelta(days=30), 50, min_keep=1) == []
        assert len(store.list()) == 5

    def test_current_is_never_pruned(self, store, write_build, clock):
        ids = _capture_series(store, write_build, clock, 6)
        store.set_current(ids[0])
        removed = store.prune(timedelta(days=1), 2, min_keep=0)
        assert ids[0] not in removed
        remaining = [v.version_id for v in store.list()]
        assert ids[0] in remaining
        assert store.get(ids[0]).version_id == ids[0]

    def test_shared_blobs_survive_prune(self, store, state_store, write_build, clock):
        ids = _capture_series(store, write_build, clock, 3)
        shared = store.get(ids[-1]).entry_map()["app.js"].hash
        store.prune(timedelta(days=365), 1)
        assert store.blob_key(shared) in state_store.objects

    def test_orphaned_blobs_are_deleted(self, store, state_store, write_build, clock):
        ids = _capture_series(store, write_build, clock, 2)
        old_index = store.get(ids[0]).entry_map()["index.html"].hash
        store.prune(timedelta(days=365), 1)
        assert store.blob_key(old_index) not in state_store.objects

    def test_index_cap_drops_oldest(self, state_store, write_build, clock):
        store = ArtifactStore(state_store, clock=clock, max_versions=3)
        ids = _capture_series(store, write_build, clock, 4)
        assert [v.version_id for v in store.list()] == list(reversed(ids[1:]))
        assert store.manifest_key(ids[0]) not in state_store.objects

    def test_index_cap_keeps_current(self, state_store, write_build, clock):
        store = ArtifactStore(state_store, clock=clock, max_versions=2)
        first = store.capture(write_build({"index.html": "first"}), make_current=True)
        clock.advance(days=1)
        _capture_series(store, write_build, clock, 3)
        assert first.version_id in [v.version_id for v in store.list()]

    def test_remove_current_refused(self, store, write_build):
        version = store.capture(write_build({"index.html": "x"}), make_current=True)
        with pytest.raises(ValueError):
            store.remove(version.version_id)

    def test_remove(self, store, write_build, clock):
        ids = _capture_series(store, write_build, clock, 2)
        store.remove(ids[0])
        assert [v.version_id for v in store.list()] == [ids[1]]

    def test_set_current_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.set_current("v0-missing")


class TestConcurrentPrune:
    def test_blob_pruned_mid_capture_is_uploaded_again(self, store, state_store, write_build, clock):
        store.capture(write_build({"index.html": "old", "app.js": "shared"}))
        clock.advance(days=1)
        other = ArtifactStore(state_store, clock=clock)

        def _load_while_pruning() -> bytes:
            assert other.prune(timedelta(0), 0)
            return b"new"

        version = store.capture_entries(
            [("app.js", lambda: b"shared"), ("index.html", _load_while_pruning)]
        )

        assert [v.version_id for v in store.list()] == [version.version_id]
        for entry in version.manifest:
            assert store.read_file(entry) in (b"shared", b"new")

    def test_pinned_version_survives_index_cap(self, state_store, write_build, clock):
        store = ArtifactStore(state_store, clock=clock, max_versions=2)
        ids = _capture_series(store, write_build, clock, 2)
        version = store.capture_entries([("index.html", lambda: b"x")], pinned=[ids[0]])
        assert [v.version_id for v in store.list()] == [version.version_id, ids[1], ids[0]]
        assert store.get(ids[0]).file_count == 2
