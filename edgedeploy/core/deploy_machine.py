"""Deterministic deployment state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS, or ROLLBACK_TRANSITIONS
  for rollback runs)
- Terminal status recorded exactly once
- Phase records appended in execution order
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from edgedeploy.core.errors import InvalidTransitionError
from edgedeploy.models.deployments import (
    STATUS_FOR_STATE,
    TERMINAL_STATES,
    Deployment,
    DeployState,
    PhaseRecord,
    transitions_for,
)

logger = logging.getLogger(__name__)


class DeployMachine:
    """Owns one Deployment and moves it through the state table.

    Every change produces a new frozen ``Deployment``; ``deployment``
    always returns the latest.

    Parameters
    ----------
    deployment:
        The initial record, normally in ``DeployState.INIT``.
    """

    def __init__(self, deployment: Deployment) -> None:
        self._deployment = deployment
        self._table = transitions_for(deployment.kind)

    @property
    def deployment(self) -> Deployment:
        return self._deployment

    @property
    def state(self) -> DeployState:
        return self._deployment.state

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def can_transition(self, target: DeployState) -> bool:
        return target in self._table.get(self.state, set())

    def transition(self, target: DeployState) -> Deployment:
        """Move to *target*; ``InvalidTransitionError`` if not allowed.

        Entering a terminal state stamps ``finished_at`` and the matching
        ``DeploymentStatus``.
        """
        current = self.state
        allowed = self._table.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {self._deployment.deployment_id} from "
                f"{current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        update: dict = {"state": target}
        if target in TERMINAL_STATES:
            update["status"] = STATUS_FOR_STATE[target]
            update["finished_at"] = datetime.now(timezone.utc)
        self._deployment = self._deployment.model_copy(update=update)
        logger.debug(
            "Deployment %s: %s -> %s",
            self._deployment.deployment_id,
            current.value,
            target.value,
        )
        return self._deployment

    def fail(self) -> Deployment:
        """Shorthand for ``transition(DeployState.FAILED)``."""
        return self.transition(DeployState.FAILED)

    # ------------------------------------------------------------------
    # Record updates (state unchanged)
    # ------------------------------------------------------------------

    def record_phase(self, record: PhaseRecord) -> Deployment:
        if self._deployment.is_terminal and self.state != DeployState.FAILED:
            raise InvalidTransitionError(
                f"Deployment {self._deployment.deployment_id} is already "
                f"{self.state.value}; cannot record phase {record.name}"
            )
        self._deployment = self._deployment.model_copy(
            update={"phases": [*self._deployment.phases, record]}
        )
        return self._deployment

    def add_warning(self, message: str) -> Deployment:
        self._deployment = self._deployment.model_copy(
            update={"warnings": [*self._deployment.warnings, message]}
        )
        return self._deployment

    def update(self, **fields: object) -> Deployment:
        """Set non-state fields such as ``produced_version``."""
        forbidden = {"state", "status", "finished_at"} & fields.keys()
        if forbidden:
            raise ValueError(f"Use transition() to change {sorted(forbidden)}")
        self._deployment = self._deployment.model_copy(update=fields)
        return self._deployment
