"""Filesystem-backed providers for local runs, dry runs and tests.

``LocalObjectStore`` keeps object bytes under ``root/<key>`` and headers in
a sidecar tree under ``root/.objmeta``. ETags are the sha256 of the bytes.
Conditional writes are atomic within one process; cross-process they rely
on ``O_EXCL`` for create-only writes.

``LocalCdn`` records invalidations in a JSON file and completes them
immediately.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from edgedeploy.core.errors import (
    DeployEnvironmentError,
    NotFoundError,
    ObjectNotFoundError,
    PreconditionFailedError,
)
from edgedeploy.core.hasher import sha256_hex
from edgedeploy.providers.base import ObjectInfo, StoredObject

logger = logging.getLogger(__name__)

_META_DIR = ".objmeta"


class LocalObjectStore:
    """Object store rooted at a local directory.

    Parameters
    ----------
    root:
        Directory holding the objects. Created on first use.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._lock = threading.RLock()

    @property
    def root(self) -> Path:
        return self._root

    def _object_path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts) or parts[0] == _META_DIR:
            raise ValueError(f"Invalid object key: {key!r}")
        return self._root.joinpath(*parts)

    def _meta_path(self, key: str) -> Path:
        rel = self._object_path(key).relative_to(self._root)
        return self._root / _META_DIR / f"{rel.as_posix()}.json"

    # ------------------------------------------------------------------
    # ObjectStore
    # ------------------------------------------------------------------

    def put_object(
        self,
        key: str,
        data: bytes,
        *,
        headers: Mapping[str, str] | None = None,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:
        path = self._object_path(key)
        with self._lock:
            if if_match is not None:
                if not path.exists() or sha256_hex(path.read_bytes()) != if_match:
                    raise PreconditionFailedError(f"ETag mismatch for {key}")
            path.parent.mkdir(parents=True, exist_ok=True)
            if if_none_match:
                try:
                    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                except FileExistsError as exc:
                    raise PreconditionFailedError(f"Object already exists: {key}") from exc
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
            else:
                tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
                tmp.write_bytes(data)
                os.replace(tmp, path)

            meta = self._meta_path(key)
            meta.parent.mkdir(parents=True, exist_ok=True)
            meta.write_text(json.dumps(dict(headers or {}), sort_keys=True), encoding="utf-8")
        logger.debug("LocalObjectStore: put %s (%d bytes)", key, len(data))
        return sha256_hex(data)

    def get_object(self, key: str) -> StoredObject:
        path = self._object_path(key)
        with self._lock:
            if not path.is_file():
                raise ObjectNotFoundError(f"Object not found: {key}")
            data = path.read_bytes()
            headers = self._read_headers(key)
        return StoredObject(key=key, data=data, etag=sha256_hex(data), headers=headers)

    def list_objects(self, prefix: str = "") -> list[ObjectInfo]:
        if not self._root.is_dir():
            return []
        found: list[ObjectInfo] = []
        with self._lock:
            for dirpath, dirnames, filenames in os.walk(self._root):
                if Path(dirpath) == self._root and _META_DIR in dirnames:
                    dirnames.remove(_META_DIR)
                for name in filenames:
                    if name.startswith(".") and name.endswith(".tmp"):
                        continue
                    path = Path(dirpath) / name
                    key = path.relative_to(self._root).as_posix()
                    if key.startswith(prefix):
                        found.append(ObjectInfo(key=key, size=path.stat().st_size))
        found.sort(key=lambda o: o.key)
        return found

    def delete_object(self, key: str) -> None:
        path = self._object_path(key)
        with self._lock:
            path.unlink(missing_ok=True)
            self._meta_path(key).unlink(missing_ok=True)
        logger.debug("LocalObjectStore: deleted %s", key)

    def get_object_metadata(self, key: str) -> dict[str, str]:
        path = self._object_path(key)
        with self._lock:
            if not path.is_file():
                raise ObjectNotFoundError(f"Object not found: {key}")
            headers = self._read_headers(key)
            headers["ETag"] = sha256_hex(path.read_bytes())
            headers["Content-Length"] = str(path.stat().st_size)
        return headers

    def check_access(self) -> None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DeployEnvironmentError(f"Local store not writable: {self._root}: {exc}") from exc
        if not os.access(self._root, os.W_OK):
            raise DeployEnvironmentError(f"Local store not writable: {self._root}")

    def _read_headers(self, key: str) -> dict[str, str]:
        meta = self._meta_path(key)
        if not meta.is_file():
            return {}
        return json.loads(meta.read_text(encoding="utf-8"))


class LocalCdn:
    """A CDN stand-in that completes every invalidation immediately.

    Parameters
    ----------
    log_path:
        JSON file recording submitted invalidations.
    """

    def __init__(self, log_path: Path) -> None:
        self._log_path = Path(log_path)
        self._lock = threading.Lock()

    def _load(self) -> list[dict[str, Any]]:
        if not self._log_path.is_file():
            return []
        return json.loads(self._log_path.read_text(encoding="utf-8"))

    def _save(self, records: list[dict[str, Any]]) -> None:
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path.write_text(json.dumps(records, indent=2), encoding="utf-8")

    def create_invalidation(
        self, distribution_id: str, patterns: list[str], caller_ref: str
    ) -> str:
        with self._lock:
            records = self._load()
            for record in records:
                if record["caller_ref"] == caller_ref and record["distribution_id"] == distribution_id:
                    if record["paths"] != list(patterns):
                        raise PreconditionFailedError(
                            f"Caller reference {caller_ref} already used for a different batch"
                        )
                    return record["id"]
            invalidation_id = "L" + uuid.uuid4().hex[:13].upper()
            records.append(
                {
                    "id": invalidation_id,
                    "distribution_id": distribution_id,
                    "caller_ref": caller_ref,
                    "paths": list(patterns),
                    "status": "Completed",
                    "create_time": datetime.now(timezone.utc).isoformat(),
                }
            )
            self._save(records)
        logger.info("LocalCdn: invalidation %s for %d paths", invalidation_id, len(patterns))
        return invalidation_id

    def get_invalidation_status(self, distribution_id: str, invalidation_id: str) -> str:
        with self._lock:
            for record in self._load():
                if record["id"] == invalidation_id and record["distribution_id"] == distribution_id:
                    return record["status"]
        raise NotFoundError(f"Invalidation not found: {invalidation_id}")

    def list_invalidations(self, distribution_id: str, limit: int = 10) -> list[dict[str, Any]]:
        with self._lock:
            records = [r for r in self._load() if r["distribution_id"] == distribution_id]
        records.reverse()
        return [
            {
                "id": r["id"],
                "status": r["status"],
                "create_time": r["create_time"],
                "path_count": len(r["paths"]),
            }
            for r in records[:limit]
        ]

    def check_access(self, distribution_id: str) -> None:
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DeployEnvironmentError(f"Local CDN log not writable: {exc}") from exc
