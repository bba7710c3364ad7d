"""Tests for RollbackController — restoring a captured Version."""

from __future__ import annotations

import pytest

from edgedeploy.cli.context import EXIT_OK, exit_code_for
from edgedeploy.core.errors import ConcurrentDeploymentError, NotFoundError
from edgedeploy.models.deployments import DeploymentKind, DeploymentStatus, DeployState


@pytest.fixture
def deployed(make_orchestrator, write_build, site_v1, site_v2):
    """An orchestrator that has deployed v1 then v2; returns (orch, v1_id, v2_id)."""
    orch = make_orchestrator()
    write_build(site_v1)
    first = orch.deploy()
    write_build(site_v2)
    second = orch.deploy()
    return orch, first.produced_version, second.produced_version


class TestRollback:
    def test_restores_site(self, deployed, site_store, site_v1, cdn):
        orch, v1, _ = deployed
        rollback = orch.rollback(v1)

        assert rollback.kind == DeploymentKind.ROLLBACK
        assert rollback.state == DeployState.ROLLED_BACK
        assert rollback.status == DeploymentStatus.ROLLED_BACK
        assert rollback.target_version == v1
        assert sorted(site_store.keys()) == sorted(site_v1)
        for rel, content in site_v1.items():
            assert site_store.data(rel) == content.encode()
        assert orch.artifacts.current().version_id == v1
        assert cdn.all_paths()[-1] == ["/app.77aa01.js", "/index.html"]
        assert exit_code_for(rollback) == EXIT_OK

    def test_phases(self, deployed):
        orch, v1, _ = deployed
        rollback = orch.rollback(v1)
        assert [p.name for p in rollback.phases] == ["snapshot", "restore", "invalidate", "verify"]
        restore = rollback.phase("restore").detail
        assert restore["uploaded"] == 1
        assert restore["deleted"] == 1
        assert restore["unchanged"] == 3

    def test_snapshot_allows_undo(self, deployed, site_store, site_v2):
        orch, v1, v2 = deployed
        rollback = orch.rollback(v1)
        snapshot_id = rollback.produced_version
        assert snapshot_id not in (None, v1, v2)

        undo = orch.rollback(snapshot_id)
        assert undo.state == DeployState.ROLLED_BACK
        assert site_store.data("index.html") == site_v2["index.html"].encode()
        assert "app.77aa01.js" in site_store.keys()

    def test_repairs_unhashed_objects(self, deployed, site_store, site_v1):
        orch, v1, _ = deployed
        site_store.put_object("about.html", b"half-written", headers={})
        orch.rollback(v1)
        assert site_store.data("about.html") == site_v1["about.html"].encode()

    def test_unknown_version(self, deployed, site_store, state_store):
        orch, _, _ = deployed
        site_store.put_log.clear()
        with pytest.raises(NotFoundError):
            orch.rollback("v-does-not-exist")
        assert site_store.put_log == []
        assert orch.lease.status() is None

    def test_respects_lease(self, deployed):
        orch, v1, _ = deployed
        held = orch.lease.acquire(holder="ci-runner")
        with pytest.raises(ConcurrentDeploymentError):
            orch.rollback(v1)
        orch.lease.release(held)
        assert orch.lease.status() is None

    def test_rollback_logged(self, deployed):
        orch, v1, _ = deployed
        rollback = orch.rollback(v1)
        recorded = orch.log.get(rollback.deployment_id)
        assert recorded.state == DeployState.ROLLED_BACK
        assert orch.log.list(1)[0].deployment_id == rollback.deployment_id

    def test_restore_failure(self, deployed, site_store):
        orch, v1, _ = deployed
        site_store.fail_puts("index.html", times=10)
        rollback = orch.rollback(v1)
        assert rollback.state == DeployState.FAILED
        assert rollback.failed_phase.name == "restore"
        assert orch.lease.status() is None

    def test_nothing_served(self, make_orchestrator, write_build, site_v1, site_store):
        orch = make_orchestrator()
        write_build(site_v1)
        v1 = orch.deploy().produced_version
        for key in site_store.keys():
            site_store.delete_object(key)

        rollback = orch.rollback(v1)
        assert rollback.state == DeployState.ROLLED_BACK
        assert rollback.produced_version is None
        assert sorted(site_store.keys()) == sorted(site_v1)

    def test_oldest_version_at_index_cap(
        self, make_orchestrator, write_build, site_v1, site_v2, site_store
    ):
        orch = make_orchestrator(retention_max_versions=3)
        write_build(site_v1)
        oldest = orch.deploy().produced_version
        write_build(site_v2)
        orch.deploy()
        write_build({**site_v2, "index.html": "<html><body>v3</body></html>"})
        orch.deploy()
        assert len(orch.artifacts.list()) == 3

        rollback = orch.rollback(oldest)

        assert rollback.state == DeployState.ROLLED_BACK, rollback.failed_phase
        assert oldest in [v.version_id for v in orch.artifacts.list()]
        assert orch.artifacts.current().version_id == oldest
        assert site_store.data("index.html") == site_v1["index.html"].encode()
