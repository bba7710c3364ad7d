"""Phase execution shared by deployments and rollbacks.

A phase is a callable taking a ``CancelToken`` and returning a
``PhaseOutcome``. ``PhaseRunner`` times it, gives it a deadline, records a
``PhaseRecord`` on the Deployment, and turns any exception into
``PhaseFailed`` so the caller can move the state machine to FAILED.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from edgedeploy.checks.verify import ProbeResult
from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.deploy_machine import DeployMachine
from edgedeploy.core.errors import ConsistencyWarning, EdgeDeployError
from edgedeploy.core.invalidation_executor import InvalidationExecutor
from edgedeploy.core.invalidation_planner import InvalidationPlanner
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.deployments import PhaseRecord, PhaseStatus
from edgedeploy.models.invalidations import InvalidationStatus

logger = logging.getLogger(__name__)

Probe = Callable[[str], ProbeResult]


def new_deployment_id(kind: str = "deploy") -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{kind}-{ts}-{uuid.uuid4().hex[:6]}"


@dataclass
class PhaseOutcome:
    value: Any = None
    status: PhaseStatus = PhaseStatus.PASSED
    detail: dict[str, Any] = field(default_factory=dict)
    warnings: list[ConsistencyWarning] = field(default_factory=list)


class PhaseFailed(Exception):
    """A phase raised; ``error`` is the original exception."""

    def __init__(self, phase: str, error: BaseException) -> None:
        super().__init__(f"{phase} failed: {error}")
        self.phase = phase
        self.error = error


class PhaseRunner:
    """Runs phases against one ``DeployMachine``.

    Parameters
    ----------
    machine:
        Receives a ``PhaseRecord`` and any warnings per phase.
    cancel:
        Parent token; each phase gets a child with its own deadline.
    timeout:
        Default per-phase deadline in seconds.
    before_phase:
        Called before each phase (lease renewal). Its errors fail the phase.
    """

    def __init__(
        self,
        machine: DeployMachine,
        cancel: CancelToken,
        *,
        timeout: float | None = None,
        before_phase: Callable[[], None] | None = None,
    ) -> None:
        self._machine = machine
        self._cancel = cancel
        self._timeout = timeout
        self._before_phase = before_phase

    def run(
        self,
        name: str,
        fn: Callable[[CancelToken], PhaseOutcome],
        *,
        timeout: float | None = None,
    ) -> PhaseOutcome:
        deployment_id = self._machine.deployment.deployment_id
        token = self._cancel.child(timeout if timeout is not None else self._timeout)
        logger.info("[%s] phase %s started", deployment_id, name)
        started = time.monotonic()
        try:
            if self._before_phase is not None:
                self._before_phase()
            token.raise_if_cancelled()
            outcome = fn(token)
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            self._machine.record_phase(
                PhaseRecord(
                    name=name,
                    status=PhaseStatus.FAILED,
                    duration_ms=duration_ms,
                    error=str(exc),
                    error_kind=type(exc).__name__,
                )
            )
            logger.error(
                "[%s] phase %s failed after %d ms: %s: %s",
                deployment_id,
                name,
                duration_ms,
                type(exc).__name__,
                exc,
            )
            raise PhaseFailed(name, exc) from exc

        for warning in outcome.warnings:
            logger.warning("[%s] %s", deployment_id, warning)
            self._machine.add_warning(str(warning))
        status = outcome.status
        if outcome.warnings and status == PhaseStatus.PASSED:
            status = PhaseStatus.WARNING
        duration_ms = int((time.monotonic() - started) * 1000)
        self._machine.record_phase(
            PhaseRecord(name=name, status=status, duration_ms=duration_ms, detail=outcome.detail)
        )
        logger.info("[%s] phase %s %s in %d ms", deployment_id, name, status.value, duration_ms)
        return outcome


# ----------------------------------------------------------------------
# Phases shared by deploy and rollback
# ----------------------------------------------------------------------


def invalidate_changes(
    changed_paths: list[str],
    *,
    planner: InvalidationPlanner,
    executor: InvalidationExecutor,
    config: DeploymentConfig,
    machine: DeployMachine,
    cancel: CancelToken,
    full: bool = False,
) -> PhaseOutcome:
    """Plan, submit and (optionally) await an invalidation for a change set."""
    plan = planner.plan(changed_paths, full=full)
    detail: dict[str, Any] = {
        "patterns": len(plan.patterns),
        "raw_paths": plan.raw_path_count,
        "estimated_cost": plan.estimated_cost,
        "full": plan.full,
    }
    if plan.is_empty:
        detail["reason"] = "no changed paths"
        return PhaseOutcome(status=PhaseStatus.SKIPPED, detail=detail)

    deployment_id = machine.deployment.deployment_id
    invalidation = executor.submit(plan, deployment_id=deployment_id, cancel=cancel)
    machine.update(invalidation_id=invalidation.invalidation_id)
    detail["invalidation_id"] = invalidation.invalidation_id

    warnings: list[ConsistencyWarning] = []
    if config.wait_for_invalidation:
        try:
            invalidation = executor.await_completion(
                invalidation, config.invalidation_max_wait_seconds, cancel=cancel
            )
        except EdgeDeployError as exc:
            warnings.append(
                ConsistencyWarning(
                    f"Could not track invalidation {invalidation.invalidation_id}: {exc}"
                )
            )
    if invalidation.status != InvalidationStatus.COMPLETED:
        warnings.append(
            ConsistencyWarning(
                f"Invalidation {invalidation.invalidation_id} still propagating "
                f"({invalidation.status.value})"
            )
        )
    detail["status"] = invalidation.status.value
    return PhaseOutcome(value=invalidation, detail=detail, warnings=warnings)


def verify_site(config: DeploymentConfig, probe: Probe) -> PhaseOutcome:
    """Probe the root document; a failure is a warning."""
    if not config.site_url:
        return PhaseOutcome(status=PhaseStatus.SKIPPED, detail={"reason": "no site_url"})
    result = probe(config.site_url)
    detail: dict[str, Any] = {"url": result.url, "status_code": result.status_code}
    if result.ok:
        detail["elapsed_ms"] = result.elapsed_ms
        return PhaseOutcome(value=result, detail=detail)
    return PhaseOutcome(
        value=result,
        detail=detail,
        warnings=[ConsistencyWarning(f"Verification failed: {result.describe()}")],
    )
