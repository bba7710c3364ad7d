"""End-to-end integration tests — real build command, local object store, local CDN.

These tests exercise the DeploymentOrchestrator, CacheClassifier,
PublishEngine, ArtifactStore, InvalidationPlanner, InvalidationExecutor,
LeaseManager, DeploymentLog and RollbackController working together over
the filesystem-backed providers.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from edgedeploy.core.orchestrator import DeploymentOrchestrator
from edgedeploy.models.cache import CacheClass
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.deployments import DeployState, PhaseStatus
from edgedeploy.providers import CONTENT_HASH_HEADER, build_providers

_BUILD_SCRIPT = """
import json, pathlib, shutil
files = json.loads(pathlib.Path("site.json").read_text())
out = pathlib.Path("out")
shutil.rmtree(out, ignore_errors=True)
out.mkdir()
for rel, size in files.items():
    path = out / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes((rel.encode() * (size // len(rel) + 1))[:size])
"""


class TestFullPipeline:
    """Build -> publish -> capture -> invalidate -> verify -> rollback."""

    @pytest.fixture
    def project(self, tmp_path: Path) -> Path:
        (tmp_path / "build.py").write_text(_BUILD_SCRIPT)
        return tmp_path

    def _site(self, project: Path, files: dict[str, int]) -> None:
        (project / "site.json").write_text(json.dumps(files))

    @pytest.fixture
    def orch(self, project: Path) -> DeploymentOrchestrator:
        config = DeploymentConfig(
            site_name="integration",
            project_dir=project,
            build_dir=Path("out"),
            build_command=[sys.executable, "build.py"],
            local_site_dir=project / "bucket",
            local_state_dir=project / "state",
            retry_base_delay_seconds=0.0,
            invalidation_poll_seconds=0.0,
        )
        return DeploymentOrchestrator(config, build_providers(config))

    def test_publish_and_classify(self, orch, project):
        self._site(project, {"index.html": 10 * 1024, "app.5e6f7a8b.js": 50 * 1024})
        deployment = orch.deploy(source_ref="0123abcd")

        assert deployment.state == DeployState.SUCCEEDED, deployment.failed_phase
        version = orch.artifacts.get(deployment.produced_version)
        assert version.file_count == 2
        assert version.total_size == 60 * 1024
        classes = {e.path: e.cache_class for e in version.manifest}
        assert classes == {
            "index.html": CacheClass.DOCUMENT,
            "app.5e6f7a8b.js": CacheClass.IMMUTABLE_ASSET,
        }
        assert version.version_id.endswith("-0123abcd")

        meta = orch.providers.site_store.get_object_metadata("app.5e6f7a8b.js")
        assert meta["Cache-Control"] == "public, max-age=31536000, immutable"
        assert meta[CONTENT_HASH_HEADER] == version.entry_map()["app.5e6f7a8b.js"].hash
        assert (project / "bucket" / "index.html").stat().st_size == 10 * 1024

    def test_document_only_change(self, orch, project):
        self._site(project, {"index.html": 10 * 1024, "app.5e6f7a8b.js": 50 * 1024})
        orch.deploy()
        self._site(project, {"index.html": 10 * 1024 + 1, "app.5e6f7a8b.js": 50 * 1024})
        deployment = orch.deploy()

        plan_detail = deployment.phase("invalidate").detail
        assert plan_detail["patterns"] == 1
        rate = orch.config.invalidation_rate_first_tier
        assert plan_detail["estimated_cost"] == pytest.approx(rate)
        history = orch.executor.history()
        assert history[0].paths == ["/index.html"]

    def test_blog_directory_collapses(self, orch, project):
        base = {"index.html": 100}
        self._site(project, base)
        orch.deploy()
        self._site(project, {**base, **{f"blog/post-{i}.html": 200 + i for i in range(6)}})
        deployment = orch.deploy()

        assert orch.executor.history()[0].paths == ["/blog/*"]
        assert deployment.phase("invalidate").detail["estimated_cost"] == pytest.approx(0.005)

    def test_rollback_round_trip(self, orch, project):
        self._site(project, {"index.html": 1000, "app.11111111.js": 2000})
        v1 = orch.deploy().produced_version
        self._site(project, {"index.html": 1001, "app.22222222.js": 2000})
        orch.deploy()

        rollback = orch.rollback(v1)
        assert rollback.state == DeployState.ROLLED_BACK
        served = sorted(p.name for p in (project / "bucket").iterdir() if p.is_file())
        assert served == ["app.11111111.js", "index.html"]
        assert (project / "bucket" / "index.html").stat().st_size == 1000
        assert orch.artifacts.current().version_id == v1

    def test_dry_run_touches_nothing(self, orch, project):
        self._site(project, {"index.html": 10})
        deployment = orch.deploy(dry_run=True)
        assert deployment.state == DeployState.SUCCEEDED
        assert deployment.phase("publish").status == PhaseStatus.SKIPPED
        assert not (project / "bucket" / "index.html").exists()
        assert not (project / "state" / ".edgedeploy" / "versions").exists()

    def test_records_survive_restart(self, orch, project):
        self._site(project, {"index.html": 10})
        deployment = orch.deploy()

        config = orch.config
        reopened = DeploymentOrchestrator(config, build_providers(config))
        assert reopened.log.get(deployment.deployment_id).state == DeployState.SUCCEEDED
        assert reopened.artifacts.current().version_id == deployment.produced_version
        assert reopened.lease.status() is None
