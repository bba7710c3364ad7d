"""Restore the site to a previously captured Version.

Phases:
    snapshot    capture what is served now as a Version, so the rollback
                itself can be undone (skipped when nothing is served)
    restore     upload target files that differ from what is served,
                delete served files the target lacks, move the current
                pointer
    invalidate  plan and submit an invalidation for the full diff
    verify      probe the root document

Served objects without a content-hash header count as differing, so a
half-finished publish is still repaired.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from edgedeploy.checks.verify import probe_root_document
from edgedeploy.core.artifact_store import ArtifactStore
from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.deploy_machine import DeployMachine
from edgedeploy.core.deployment_log import DeploymentLog
from edgedeploy.core.errors import ConsistencyWarning, LeaseOwnershipError
from edgedeploy.core.invalidation_executor import InvalidationExecutor
from edgedeploy.core.invalidation_planner import InvalidationPlanner
from edgedeploy.core.lease import LeaseManager
from edgedeploy.core.phases import (
    PhaseFailed,
    PhaseOutcome,
    PhaseRunner,
    Probe,
    invalidate_changes,
    new_deployment_id,
    verify_site,
)
from edgedeploy.core.publish_engine import PublishEngine, UploadItem
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.deployments import (
    Deployment,
    DeploymentKind,
    DeployState,
    PhaseStatus,
)
from edgedeploy.models.versions import ManifestEntry, Version
from edgedeploy.providers.base import ObjectStore

logger = logging.getLogger(__name__)


class RollbackController:
    """Operator-triggered (or auto-triggered) restore of a Version.

    Parameters
    ----------
    config:
        Deployment configuration.
    site_store:
        The store serving the site; snapshot reads come from here.
    artifacts, publisher, planner, executor, lease, log:
        The same components the orchestrator uses.
    probe:
        HTTP reachability probe for the verify phase.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        site_store: ObjectStore,
        *,
        artifacts: ArtifactStore,
        publisher: PublishEngine,
        planner: InvalidationPlanner,
        executor: InvalidationExecutor,
        lease: LeaseManager,
        log: DeploymentLog,
        probe: Probe | None = None,
    ) -> None:
        self._config = config
        self._site_store = site_store
        self._artifacts = artifacts
        self._publisher = publisher
        self._planner = planner
        self._executor = executor
        self._lease = lease
        self._log = log
        self._probe = probe or (
            lambda url: probe_root_document(url, timeout=config.verify_timeout_seconds)
        )

    def rollback(
        self,
        to_version_id: str,
        *,
        cancel: CancelToken | None = None,
        hold_lease: bool = True,
        rollback_of: str | None = None,
    ) -> Deployment:
        """Restore *to_version_id*; ``NotFoundError`` if it was pruned.

        Returns the rollback Deployment, ``rolled_back`` on success and
        ``failed`` otherwise.
        """
        target = self._artifacts.get(to_version_id)
        cancel = cancel or CancelToken()
        deployment_id = new_deployment_id("rollback")
        lease = self._lease.acquire(deployment_id=deployment_id) if hold_lease else None

        machine = DeployMachine(
            Deployment(
                deployment_id=deployment_id,
                kind=DeploymentKind.ROLLBACK,
                target_version=target.version_id,
                rollback_of=rollback_of,
            )
        )
        logger.info("Rolling back to %s (%s)", target.version_id, deployment_id)
        try:
            self._log.save(machine.deployment)
            self._execute(machine, target, cancel)
        finally:
            if lease is not None:
                try:
                    self._lease.release(lease)
                except LeaseOwnershipError as exc:
                    logger.warning("Could not release lease: %s", exc)
        self._log.save(machine.deployment)
        return machine.deployment

    def _execute(self, machine: DeployMachine, target: Version, cancel: CancelToken) -> None:
        runner = PhaseRunner(machine, cancel, timeout=self._config.phase_timeout_seconds)
        served: dict[str, str | None] = {}
        try:
            snapshot = runner.run(
                "snapshot", lambda token: self._snapshot(machine, target, served, token)
            )
            if snapshot.value is not None:
                machine.update(produced_version=snapshot.value.version_id)

            restore = runner.run("restore", lambda token: self._restore(target, served, token))
            machine.transition(DeployState.PUBLISHED)

            runner.run(
                "invalidate",
                lambda token: invalidate_changes(
                    restore.value,
                    planner=self._planner,
                    executor=self._executor,
                    config=self._config,
                    machine=machine,
                    cancel=token,
                ),
            )
            machine.transition(DeployState.INVALIDATED)

            runner.run("verify", lambda token: verify_site(self._config, self._probe))
            machine.transition(DeployState.VERIFIED)
        except PhaseFailed as failure:
            logger.error("Rollback %s failed in %s", machine.deployment.deployment_id, failure.phase)
            machine.fail()
            return
        machine.transition(DeployState.ROLLED_BACK)
        logger.info(
            "Rolled back to %s (%s)", target.version_id, machine.deployment.deployment_id
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _snapshot(
        self,
        machine: DeployMachine,
        target: Version,
        served: dict[str, str | None],
        cancel: CancelToken,
    ) -> PhaseOutcome:
        served.update(self._publisher.served_state())
        if not served:
            return PhaseOutcome(
                status=PhaseStatus.SKIPPED,
                detail={"reason": "nothing served"},
                warnings=[ConsistencyWarning("Nothing is served; no pre-rollback snapshot taken")],
            )
        entries = [(rel, self._reader(rel)) for rel in sorted(served)]
        version = self._artifacts.capture_entries(
            entries,
            deployment_id=machine.deployment.deployment_id,
            pinned=[target.version_id],
            cancel=cancel,
        )
        return PhaseOutcome(
            value=version,
            detail={"version_id": version.version_id, "files": version.file_count},
        )

    def _reader(self, rel: str) -> Callable[[], bytes]:
        key = self._publisher.site_key(rel)
        return lambda: self._site_store.get_object(key).data

    def _restore(
        self, target: Version, served: dict[str, str | None], cancel: CancelToken
    ) -> PhaseOutcome:
        wanted = target.entry_map()
        differing = [e for rel, e in sorted(wanted.items()) if served.get(rel) != e.hash]
        extras = sorted(rel for rel in served if rel not in wanted)

        uploaded = self._publisher.upload_entries(
            [UploadItem(e.path, self._blob_loader(e), e.hash) for e in differing],
            cancel=cancel,
        )
        deleted = self._publisher.delete_paths(extras, cancel=cancel)
        self._artifacts.set_current(target.version_id)
        changed = sorted({"/" + p for p in uploaded + deleted})
        return PhaseOutcome(
            value=changed,
            detail={
                "target": target.version_id,
                "uploaded": len(uploaded),
                "deleted": len(deleted),
                "unchanged": len(wanted) - len(differing),
            },
        )

    def _blob_loader(self, entry: ManifestEntry) -> Callable[[], bytes]:
        return lambda: self._artifacts.read_file(entry)
