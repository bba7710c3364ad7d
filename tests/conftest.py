"""Shared test fixtures for edgedeploy."""

from __future__ import annotations

import shutil
import threading
import uuid
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from edgedeploy.checks.commands import CommandResult
from edgedeploy.checks.verify import ProbeResult
from edgedeploy.core.errors import (
    BuildError,
    DeployEnvironmentError,
    NotFoundError,
    ObjectNotFoundError,
    PreconditionFailedError,
    TransientProviderError,
)
from edgedeploy.core.hasher import sha256_hex
from edgedeploy.core.orchestrator import DeploymentOrchestrator
from edgedeploy.core.retry import RetryPolicy
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.providers import Providers
from edgedeploy.providers.base import ObjectInfo, StoredObject

# ---------------------------------------------------------------------------
# In-memory providers with fault injection
# ---------------------------------------------------------------------------


class InMemoryObjectStore:
    """Dict-backed ObjectStore. ETags are the sha256 of the bytes.

    ``fail_puts(match, times)`` makes the next *times* puts whose key
    contains *match* raise; ``TransientProviderError`` by default.
    """

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, dict[str, str]]] = {}
        self.put_log: list[str] = []
        self.delete_log: list[str] = []
        self.unreachable = False
        self._faults: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def fail_puts(
        self,
        match: str,
        times: int = 1,
        error: type[Exception] = TransientProviderError,
    ) -> None:
        self._faults.append({"match": match, "times": times, "error": error})

    def _maybe_fail(self, key: str) -> None:
        for fault in self._faults:
            if fault["times"] > 0 and fault["match"] in key:
                fault["times"] -= 1
                raise fault["error"](f"injected failure for {key}")

    def put_object(
        self,
        key: str,
        data: bytes,
        *,
        headers: Mapping[str, str] | None = None,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:
        with self._lock:
            self._maybe_fail(key)
            existing = self.objects.get(key)
            if if_none_match and existing is not None:
                raise PreconditionFailedError(f"exists: {key}")
            if if_match is not None and (
                existing is None or sha256_hex(existing[0]) != if_match
            ):
                raise PreconditionFailedError(f"etag mismatch: {key}")
            self.objects[key] = (bytes(data), dict(headers or {}))
            self.put_log.append(key)
            return sha256_hex(data)

    def get_object(self, key: str) -> StoredObject:
        with self._lock:
            if key not in self.objects:
                raise ObjectNotFoundError(key)
            data, headers = self.objects[key]
        return StoredObject(key=key, data=data, etag=sha256_hex(data), headers=headers)

    def list_objects(self, prefix: str = "") -> list[ObjectInfo]:
        with self._lock:
            return [
                ObjectInfo(key=k, size=len(v[0]))
                for k, v in sorted(self.objects.items())
                if k.startswith(prefix)
            ]

    def delete_object(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
            self.delete_log.append(key)

    def get_object_metadata(self, key: str) -> dict[str, str]:
        with self._lock:
            if key not in self.objects:
                raise ObjectNotFoundError(key)
            data, headers = self.objects[key]
        meta = dict(headers)
        meta["ETag"] = sha256_hex(data)
        meta["Content-Length"] = str(len(data))
        return meta

    def check_access(self) -> None:
        if self.unreachable:
            raise DeployEnvironmentError("bucket unreachable")

    # helpers for assertions

    def data(self, key: str) -> bytes:
        return self.objects[key][0]

    def headers(self, key: str) -> dict[str, str]:
        return self.objects[key][1]

    def keys(self, prefix: str = "") -> list[str]:
        return [o.key for o in self.list_objects(prefix)]


class FakeCdn:
    """CdnClient double.

    ``statuses`` is consumed one per status poll; once empty every poll
    returns ``final_status``. ``fail_creates`` and ``fail_polls`` transient
    failures are raised before the first successful create or status poll.
    """

    def __init__(self) -> None:
        self.invalidations: dict[str, dict[str, Any]] = {}
        self.create_calls = 0
        self.statuses: list[str] = []
        self.final_status = "Completed"
        self.fail_creates = 0
        self.fail_polls = 0
        self.unreachable = False

    def create_invalidation(
        self, distribution_id: str, patterns: list[str], caller_ref: str
    ) -> str:
        self.create_calls += 1
        if self.fail_creates > 0:
            self.fail_creates -= 1
            raise TransientProviderError("TooManyInvalidationsInProgress")
        for inv_id, record in self.invalidations.items():
            if record["caller_ref"] == caller_ref:
                return inv_id
        inv_id = f"I{uuid.uuid4().hex[:12].upper()}"
        self.invalidations[inv_id] = {
            "distribution_id": distribution_id,
            "paths": list(patterns),
            "caller_ref": caller_ref,
        }
        return inv_id

    def get_invalidation_status(self, distribution_id: str, invalidation_id: str) -> str:
        if invalidation_id not in self.invalidations:
            raise NotFoundError(invalidation_id)
        if self.fail_polls > 0:
            self.fail_polls -= 1
            raise TransientProviderError("Throttling")
        if self.statuses:
            return self.statuses.pop(0)
        return self.final_status

    def list_invalidations(self, distribution_id: str, limit: int = 10) -> list[dict[str, Any]]:
        return [
            {"id": inv_id, "status": self.final_status, "create_time": ""}
            for inv_id in list(self.invalidations)[-limit:]
        ]

    def check_access(self, distribution_id: str) -> None:
        if self.unreachable:
            raise DeployEnvironmentError(f"no such distribution {distribution_id}")

    def all_paths(self) -> list[list[str]]:
        return [record["paths"] for record in self.invalidations.values()]


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class FakeCommandRunner:
    """Stands in for ``run_command``; records every argv it receives.

    ``on_build`` runs in place of the build command. ``fail`` maps an
    argv[0] to the message of a ``BuildError`` it should raise.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.on_build: Callable[[], None] | None = None
        self.fail: dict[str, str] = {}

    def __call__(self, argv, *, cwd, timeout=None, cancel=None) -> CommandResult:
        self.calls.append(list(argv))
        if argv[0] in self.fail:
            raise BuildError(self.fail[argv[0]])
        if argv[0] == "build" and self.on_build is not None:
            self.on_build()
        return CommandResult(tuple(argv), 0, 1, "")


class FakeProbe:
    def __init__(self, ok: bool = True, status_code: int = 200) -> None:
        self.ok = ok
        self.status_code = status_code
        self.urls: list[str] = []

    def __call__(self, url: str) -> ProbeResult:
        self.urls.append(url)
        return ProbeResult(url=url, ok=self.ok, status_code=self.status_code, elapsed_ms=3)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def site_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def state_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def cdn() -> FakeCdn:
    return FakeCdn()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts, no sleeping."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False,
                       sleep=lambda _: None)


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def write_build(build_dir: Path) -> Callable[[dict[str, bytes | str]], Path]:
    """Factory fixture: replace the build tree with *files*."""

    def _write(files: dict[str, bytes | str]) -> Path:
        if build_dir.exists():
            shutil.rmtree(build_dir)
        for rel, content in files.items():
            path = build_dir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, str):
                content = content.encode("utf-8")
            path.write_bytes(content)
        return build_dir

    return _write


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., DeploymentConfig]:
    """Factory fixture: a config pointed at ``tmp_path`` with fast timings."""

    def _factory(**overrides: Any) -> DeploymentConfig:
        values: dict[str, Any] = {
            "site_name": "test-site",
            "distribution_id": "ETESTDIST",
            "project_dir": tmp_path,
            "build_dir": Path("out"),
            "build_command": ["build"],
            "retry_max_attempts": 3,
            "retry_base_delay_seconds": 0.0,
            "retry_max_delay_seconds": 0.0,
            "invalidation_poll_seconds": 0.0,
            "invalidation_max_wait_seconds": 1.0,
            "prune_after_deploy": False,
        }
        values.update(overrides)
        return DeploymentConfig(**values)

    return _factory


@pytest.fixture
def command_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def make_orchestrator(
    make_config: Callable[..., DeploymentConfig],
    site_store: InMemoryObjectStore,
    state_store: InMemoryObjectStore,
    cdn: FakeCdn,
    fast_retry: RetryPolicy,
    command_runner: FakeCommandRunner,
    probe: FakeProbe,
) -> Callable[..., DeploymentOrchestrator]:
    """Factory fixture: an orchestrator over the in-memory providers."""

    def _factory(**config_overrides: Any) -> DeploymentOrchestrator:
        providers = Providers(
            site_store=site_store,
            state_store=state_store,
            cdn=cdn,
            credential_check=lambda: "arn:aws:iam::123456789012:user/test",
        )
        return DeploymentOrchestrator(
            make_config(**config_overrides),
            providers,
            retry=fast_retry,
            command_runner=command_runner,
            probe=probe,
        )

    return _factory


_SITE_V1: dict[str, bytes | str] = {
    "index.html": "<html><body>v1</body></html>",
    "about.html": "<html>about</html>",
    "app.3f2a1b.js": "console.log('v1');",
    "styles.9c8d7e.css": "body{color:red}",
}

_SITE_V2: dict[str, bytes | str] = {
    "index.html": "<html><body>v2</body></html>",
    "about.html": "<html>about</html>",
    "app.77aa01.js": "console.log('v2');",
    "styles.9c8d7e.css": "body{color:red}",
}


@pytest.fixture
def site_v1() -> dict[str, bytes | str]:
    """Four files: two documents, one hashed script, one hashed stylesheet."""
    return dict(_SITE_V1)


@pytest.fixture
def site_v2() -> dict[str, bytes | str]:
    """``site_v1`` with a new index.html and a renamed script bundle."""
    return dict(_SITE_V2)
