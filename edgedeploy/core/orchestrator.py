"""Deployment orchestrator: the central coordinator for one deploy run.

Wires the CacheClassifier, ArtifactStore, InvalidationPlanner,
PublishEngine, InvalidationExecutor, LeaseManager, DeploymentLog and
RollbackController into a single pipeline, and drives a ``DeployMachine``
through it:

    init -> preflight_checked -> built -> optimized -> published
         -> invalidated -> verified -> succeeded

Any phase failure moves the Deployment to ``failed`` and stops. Failures
are returned on the Deployment, not raised; the only exception a caller
sees from ``deploy`` is ``ConcurrentDeploymentError`` when the lease is
taken.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from edgedeploy.checks.commands import run_command
from edgedeploy.checks.preflight import check_environment
from edgedeploy.checks.verify import probe_root_document
from edgedeploy.core.artifact_store import ArtifactStore
from edgedeploy.core.cache_classifier import CacheClassifier
from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.deploy_machine import DeployMachine
from edgedeploy.core.deployment_log import DeploymentLog
from edgedeploy.core.errors import (
    ConsistencyWarning,
    EdgeDeployError,
    LeaseOwnershipError,
)
from edgedeploy.core.hasher import walk_build_dir
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
from edgedeploy.core.publish_engine import PublishEngine, PublishResult
from edgedeploy.core.retry import RetryPolicy
from edgedeploy.core.rollback import RollbackController
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.deployments import Deployment, DeployState, PhaseStatus
from edgedeploy.models.lease import Lease
from edgedeploy.models.versions import Version
from edgedeploy.providers import Providers

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., Any]

# Phases after which a failed deploy may have changed what is served.
_SITE_MUTATING_PHASES = frozenset({"publish", "capture"})


class DeploymentOrchestrator:
    """Runs deployments against one site.

    Parameters
    ----------
    config:
        The frozen deployment configuration.
    providers:
        Site store, state store, CDN and credential check.
    retry:
        Shared retry policy. Built from *config* if not given.
    command_runner:
        Runs build, optimizer and pre-flight commands.
    probe:
        HTTP probe used by the verify phase.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        providers: Providers,
        *,
        retry: RetryPolicy | None = None,
        command_runner: CommandRunner = run_command,
        probe: Probe | None = None,
    ) -> None:
        self.config = config
        self.providers = providers
        self._run_command = command_runner
        self._probe = probe or (
            lambda url: probe_root_document(url, timeout=config.verify_timeout_seconds)
        )

        retry = retry or RetryPolicy.from_config(config)
        self.classifier = CacheClassifier(config)
        self.artifacts = ArtifactStore(
            providers.state_store,
            prefix=config.state_prefix,
            classifier=self.classifier,
            max_versions=config.retention_max_versions,
        )
        self.planner = InvalidationPlanner(config)
        self.publisher = PublishEngine(
            providers.site_store, config, classifier=self.classifier, retry=retry
        )
        self.executor = InvalidationExecutor.from_config(
            providers.cdn, providers.state_store, config, retry=retry
        )
        self.lease = LeaseManager(
            providers.state_store,
            f"{config.state_prefix}lease.json",
            ttl_seconds=config.lease_ttl_seconds,
            holder=config.lease_holder or "edgedeploy",
        )
        self.log = DeploymentLog(providers.state_store, prefix=config.state_prefix)
        self.rollback_controller = RollbackController(
            config,
            providers.site_store,
            artifacts=self.artifacts,
            publisher=self.publisher,
            planner=self.planner,
            executor=self.executor,
            lease=self.lease,
            log=self.log,
            probe=self._probe,
        )

        self._held: Lease | None = None

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    def deploy(
        self,
        *,
        skip_build: bool = False,
        dry_run: bool = False,
        aggressive_invalidate: bool = False,
        source_ref: str | None = None,
        cancel: CancelToken | None = None,
    ) -> Deployment:
        """Run one deployment end to end.

        Raises ``ConcurrentDeploymentError`` before doing anything if
        another deployment holds the lease. A dry run takes no lease and
        writes nothing.
        """
        cancel = cancel or CancelToken()
        deployment_id = new_deployment_id("deploy")
        if not dry_run:
            self._held = self.lease.acquire(deployment_id=deployment_id)

        machine = DeployMachine(
            Deployment(deployment_id=deployment_id, dry_run=dry_run, source_ref=source_ref)
        )
        logger.info(
            "Deployment %s started%s", deployment_id, " (dry run)" if dry_run else ""
        )
        try:
            if not dry_run:
                self.log.save(machine.deployment)
            self._execute(
                machine,
                cancel,
                skip_build=skip_build,
                dry_run=dry_run,
                aggressive_invalidate=aggressive_invalidate,
                source_ref=source_ref,
            )
        finally:
            if self._held is not None:
                try:
                    self.lease.release(self._held)
                except LeaseOwnershipError as exc:
                    logger.warning("Could not release lease: %s", exc)
                self._held = None
        if not dry_run:
            self.log.save(machine.deployment)

        deployment = machine.deployment
        logger.info(
            "Deployment %s finished: %s%s",
            deployment_id,
            deployment.status.value,
            f" with {len(deployment.warnings)} warning(s)" if deployment.warnings else "",
        )
        return deployment

    def _renew_lease(self) -> None:
        if self._held is not None:
            self._held = self.lease.renew(self._held)

    def _execute(
        self,
        machine: DeployMachine,
        cancel: CancelToken,
        *,
        skip_build: bool,
        dry_run: bool,
        aggressive_invalidate: bool,
        source_ref: str | None,
    ) -> None:
        runner = PhaseRunner(
            machine,
            cancel,
            timeout=self.config.phase_timeout_seconds,
            before_phase=self._renew_lease,
        )
        seen: dict[str, Version | None] = {}
        try:
            runner.run(
                "preflight",
                lambda token: PhaseOutcome(
                    detail=check_environment(self.providers, self.config, cancel=token)
                ),
            )
            machine.transition(DeployState.PREFLIGHT_CHECKED)

            runner.run("build", lambda token: self._build(token, skip_build))
            machine.transition(DeployState.BUILT)

            runner.run("optimize", self._optimize)
            machine.transition(DeployState.OPTIMIZED)

            if dry_run:
                self._dry_run(machine, runner, aggressive_invalidate)
                return

            published = runner.run("publish", lambda token: self._publish(token, seen))
            machine.transition(DeployState.PUBLISHED)

            captured = runner.run(
                "capture",
                lambda token: self._capture(token, machine.deployment.deployment_id, source_ref),
            )
            machine.update(produced_version=captured.value.version_id)

            result: PublishResult = published.value
            runner.run(
                "invalidate",
                lambda token: invalidate_changes(
                    result.changed_paths,
                    planner=self.planner,
                    executor=self.executor,
                    config=self.config,
                    machine=machine,
                    cancel=token,
                    full=aggressive_invalidate,
                ),
            )
            machine.transition(DeployState.INVALIDATED)

            runner.run("verify", lambda token: verify_site(self.config, self._probe))
            machine.transition(DeployState.VERIFIED)

            if self.config.prune_after_deploy:
                runner.run("retention", self._retention)
        except PhaseFailed as failure:
            # produced_version is only reported for a successful deploy.
            machine.update(produced_version=None)
            machine.fail()
            self._maybe_auto_rollback(machine, failure, seen.get("previous"))
            return
        machine.transition(DeployState.SUCCEEDED)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _build(self, cancel: CancelToken, skip_build: bool) -> PhaseOutcome:
        build_dir = self.config.resolved_build_dir
        if skip_build:
            files = walk_build_dir(build_dir)
            return PhaseOutcome(
                status=PhaseStatus.SKIPPED,
                detail={"reason": "--skip-build", "build_dir": str(build_dir), "files": len(files)},
            )
        result = self._run_command(
            self.config.build_command,
            cwd=self.config.project_dir,
            timeout=self.config.build_timeout_seconds,
            cancel=cancel,
        )
        files = walk_build_dir(build_dir)
        return PhaseOutcome(
            detail={
                "build_dir": str(build_dir),
                "files": len(files),
                "duration_ms": getattr(result, "duration_ms", 0),
            }
        )

    def _optimize(self, cancel: CancelToken) -> PhaseOutcome:
        if not self.config.optimize_commands:
            return PhaseOutcome(status=PhaseStatus.SKIPPED, detail={"reason": "no optimizers"})
        warnings: list[ConsistencyWarning] = []
        for argv in self.config.optimize_commands:
            try:
                self._run_command(
                    argv,
                    cwd=self.config.project_dir,
                    timeout=self.config.build_timeout_seconds,
                    cancel=cancel,
                )
            except EdgeDeployError as exc:
                warnings.append(ConsistencyWarning(f"Optimizer {' '.join(argv)} failed: {exc}"))
        # An optimizer must not leave the build tree empty.
        walk_build_dir(self.config.resolved_build_dir)
        return PhaseOutcome(
            detail={"commands": len(self.config.optimize_commands), "failed": len(warnings)},
            warnings=warnings,
        )

    def _publish(self, cancel: CancelToken, seen: dict[str, Version | None]) -> PhaseOutcome:
        previous = seen["previous"] = self.artifacts.current()
        result = self.publisher.publish(
            self.config.resolved_build_dir, previous, cancel=cancel
        )
        return PhaseOutcome(
            value=result,
            detail={
                "previous_version": previous.version_id if previous else None,
                "uploaded": len(result.uploaded),
                "unchanged": result.unchanged,
                "removed": len(result.removed),
            },
        )

    def _capture(
        self, cancel: CancelToken, deployment_id: str, source_ref: str | None
    ) -> PhaseOutcome:
        version = self.artifacts.capture(
            self.config.resolved_build_dir,
            source_ref=source_ref,
            deployment_id=deployment_id,
            make_current=True,
            cancel=cancel,
        )
        return PhaseOutcome(
            value=version,
            detail={
                "version_id": version.version_id,
                "files": version.file_count,
                "bytes": version.total_size,
            },
        )

    def _retention(self, cancel: CancelToken) -> PhaseOutcome:
        try:
            removed = self.prune(hold_lease=False)
        except EdgeDeployError as exc:
            return PhaseOutcome(
                warnings=[ConsistencyWarning(f"Retention pruning failed: {exc}")]
            )
        return PhaseOutcome(detail={"pruned": removed})

    def _dry_run(
        self,
        machine: DeployMachine,
        runner: PhaseRunner,
        aggressive_invalidate: bool,
    ) -> None:
        planned = runner.run(
            "publish",
            lambda token: PhaseOutcome(
                value=self.publisher.plan(
                    self.config.resolved_build_dir, self.artifacts.current()
                ),
                status=PhaseStatus.SKIPPED,
            ),
        )
        result: PublishResult = planned.value
        machine.transition(DeployState.PUBLISHED)

        def _plan(token: CancelToken) -> PhaseOutcome:
            plan = self.planner.plan(result.changed_paths, full=aggressive_invalidate)
            return PhaseOutcome(
                value=plan,
                status=PhaseStatus.SKIPPED,
                detail={
                    "dry_run": True,
                    "would_upload": result.uploaded,
                    "unchanged": result.unchanged,
                    "patterns": plan.patterns,
                    "estimated_cost": plan.estimated_cost,
                },
            )

        runner.run("invalidate", _plan)
        machine.transition(DeployState.INVALIDATED)
        machine.transition(DeployState.VERIFIED)
        machine.transition(DeployState.SUCCEEDED)

    def _maybe_auto_rollback(
        self, machine: DeployMachine, failure: PhaseFailed, previous: Version | None
    ) -> None:
        deployment = machine.deployment
        if deployment.dry_run or failure.phase not in _SITE_MUTATING_PHASES:
            return
        if not self.config.auto_rollback_on_failure:
            if previous is not None:
                logger.warning(
                    "Deployment %s failed during %s; the site may be partially updated. "
                    "Run `edgedeploy artifact restore %s` to roll back.",
                    deployment.deployment_id,
                    failure.phase,
                    previous.version_id,
                )
            return
        if previous is None:
            logger.warning("No previous version to roll back to")
            return

        logger.warning("Automatically rolling back to %s", previous.version_id)
        try:
            rollback = self.rollback_controller.rollback(
                previous.version_id,
                hold_lease=False,
                rollback_of=deployment.deployment_id,
            )
        except EdgeDeployError as exc:
            machine.add_warning(f"Automatic rollback could not start: {exc}")
            return
        if rollback.state == DeployState.ROLLED_BACK:
            machine.add_warning(
                f"Rolled back to {previous.version_id} by {rollback.deployment_id}"
            )
            machine.transition(DeployState.ROLLED_BACK)
        else:
            machine.add_warning(f"Automatic rollback {rollback.deployment_id} failed")

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def rollback(self, version_id: str, *, cancel: CancelToken | None = None) -> Deployment:
        return self.rollback_controller.rollback(version_id, cancel=cancel)

    def prune(
        self,
        *,
        max_age_days: int | None = None,
        max_count: int | None = None,
        hold_lease: bool = True,
    ) -> list[str]:
        """Apply the retention policy (config defaults unless overridden).

        Runs under the deployment lease unless the caller already holds it;
        ``ConcurrentDeploymentError`` if another run holds it.
        """
        days = self.config.retention_max_age_days if max_age_days is None else max_age_days
        count = self.config.retention_max_versions if max_count is None else max_count
        if not hold_lease:
            return self._prune(days, count)
        with self.lease.held(deployment_id=new_deployment_id("prune")):
            return self._prune(days, count)

    def _prune(self, days: int, count: int) -> list[str]:
        return self.artifacts.prune(
            timedelta(days=days),
            count,
            min_keep=min(self.config.retention_min_keep, count),
        )

