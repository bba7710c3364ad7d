"""Hashing and build-tree helpers shared by capture and publish."""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from edgedeploy.core.errors import ArtifactIOError

_CHUNK = 1024 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Stream a file through SHA-256."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def normalize_rel_path(path: str) -> str:
    """Relative site path: forward slashes, no leading slash."""
    return path.replace("\\", "/").lstrip("/")


@dataclass(frozen=True)
class BuildFile:
    """A file found in the build tree."""

    rel_path: str
    abs_path: Path
    size: int

    def read_bytes(self) -> bytes:
        return self.abs_path.read_bytes()


def walk_build_dir(build_dir: Path) -> list[BuildFile]:
    """List every regular file under *build_dir*, sorted by relative path.

    Raises ``ArtifactIOError`` if the directory is missing, unreadable or
    contains no files.
    """
    root = Path(build_dir)
    if not root.is_dir():
        raise ArtifactIOError(f"Build directory not found: {root}")

    files: list[BuildFile] = []

    def _on_error(exc: OSError) -> None:
        raise ArtifactIOError(f"Cannot read build directory {root}: {exc}") from exc

    try:
        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
            dirnames.sort()
            for name in filenames:
                abs_path = Path(dirpath) / name
                if not abs_path.is_file():
                    continue
                rel = normalize_rel_path(abs_path.relative_to(root).as_posix())
                files.append(BuildFile(rel, abs_path, abs_path.stat().st_size))
    except OSError as exc:
        raise ArtifactIOError(f"Cannot read build directory {root}: {exc}") from exc

    if not files:
        raise ArtifactIOError(f"Build directory is empty: {root}")
    files.sort(key=lambda f: f.rel_path)
    return files
