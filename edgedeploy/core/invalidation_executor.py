"""Submit invalidation plans to the CDN and track them to completion.

Submission is idempotent per deployment: the caller reference is derived
from the deployment id, so a retried submit cannot create a second
invalidation. Polling runs at a fixed interval up to a maximum wait; on
timeout the Invalidation comes back still ``in_progress`` and the caller
records a warning instead of failing.

Every submission is appended to a capped history log in the state store.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.errors import (
    IndexConflictError,
    InvalidationError,
    ObjectNotFoundError,
    PreconditionFailedError,
    TransientProviderError,
)
from edgedeploy.core.hasher import canonical_json_bytes
from edgedeploy.core.retry import RetryExhaustedError, RetryPolicy
from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.invalidations import (
    Invalidation,
    InvalidationLogEntry,
    InvalidationPlan,
    InvalidationStatus,
)
from edgedeploy.providers.base import CdnClient, ObjectStore

logger = logging.getLogger(__name__)

_LOGGED_PATHS = 10


def map_provider_status(status: str) -> InvalidationStatus:
    """``InProgress``/``Completed`` (any case) -> ``InvalidationStatus``."""
    normalized = status.replace("_", "").replace(" ", "").lower()
    if normalized == "completed":
        return InvalidationStatus.COMPLETED
    if normalized == "inprogress":
        return InvalidationStatus.IN_PROGRESS
    if normalized in ("failed", "error"):
        return InvalidationStatus.FAILED
    return InvalidationStatus.PENDING


def caller_reference_for(deployment_id: str) -> str:
    return f"edgedeploy-{deployment_id}"


class InvalidationHistory(BaseModel):
    """The persisted history log, newest first."""

    model_config = ConfigDict(frozen=True)

    entries: list[InvalidationLogEntry] = []


class InvalidationExecutor:
    """Submits, polls and logs CDN invalidations.

    Parameters
    ----------
    cdn:
        The CDN client.
    distribution_id:
        Distribution every request targets.
    state_store:
        Where the history log lives.
    prefix:
        State key prefix.
    retry:
        Shared retry policy for submission.
    poll_interval:
        Seconds between status polls.
    history_limit:
        Maximum history entries kept; oldest are dropped.
    """

    def __init__(
        self,
        cdn: CdnClient,
        distribution_id: str,
        state_store: ObjectStore,
        *,
        prefix: str = ".edgedeploy/",
        retry: RetryPolicy | None = None,
        poll_interval: float = 30.0,
        history_limit: int = 100,
        index_retries: int = 5,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cdn = cdn
        self._distribution_id = distribution_id
        self._state = state_store
        self._prefix = prefix
        self._retry = retry or RetryPolicy()
        self._poll_interval = poll_interval
        self._history_limit = history_limit
        self._index_retries = index_retries
        self._monotonic = monotonic

    @classmethod
    def from_config(
        cls,
        cdn: CdnClient,
        state_store: ObjectStore,
        config: DeploymentConfig,
        *,
        retry: RetryPolicy | None = None,
    ) -> InvalidationExecutor:
        return cls(
            cdn,
            config.distribution_id,
            state_store,
            prefix=config.state_prefix,
            retry=retry or RetryPolicy.from_config(config),
            poll_interval=config.invalidation_poll_seconds,
            history_limit=config.invalidation_history_limit,
        )

    @property
    def history_key(self) -> str:
        return f"{self._prefix}invalidations/history.json"

    # ------------------------------------------------------------------
    # Submit and poll
    # ------------------------------------------------------------------

    def submit(
        self,
        plan: InvalidationPlan,
        *,
        deployment_id: str,
        cancel: CancelToken | None = None,
    ) -> Invalidation:
        """Submit *plan*; raises ``InvalidationError`` once retries run out."""
        if plan.is_empty:
            raise ValueError("Refusing to submit an empty invalidation plan")
        caller_ref = caller_reference_for(deployment_id)
        try:
            invalidation_id = self._retry.call(
                lambda: self._cdn.create_invalidation(
                    self._distribution_id, list(plan.patterns), caller_ref
                ),
                description=f"invalidation for {deployment_id}",
                cancel=cancel,
            )
        except RetryExhaustedError as exc:
            raise InvalidationError(f"Invalidation submission failed: {exc}") from exc

        invalidation = Invalidation(
            invalidation_id=invalidation_id,
            distribution_id=self._distribution_id,
            requested_paths=list(plan.patterns),
            estimated_cost=plan.estimated_cost,
            status=InvalidationStatus.IN_PROGRESS,
            caller_reference=caller_ref,
        )
        logger.info(
            "Submitted invalidation %s: %d pattern(s), estimated $%.3f",
            invalidation_id,
            len(plan.patterns),
            plan.estimated_cost,
        )
        self._record(invalidation, deployment_id)
        return invalidation

    def await_completion(
        self,
        invalidation: Invalidation,
        timeout: float,
        *,
        cancel: CancelToken | None = None,
    ) -> Invalidation:
        """Poll until the CDN reports a terminal status or *timeout* passes.

        Never raises on timeout or cancellation: the Invalidation is
        returned still ``in_progress``. A throttled or failed status poll
        counts as still in progress and is retried on the next interval.
        """
        if invalidation.status.is_terminal:
            return invalidation
        token = cancel or CancelToken()
        deadline = self._monotonic() + timeout
        while True:
            status = self._poll(invalidation.invalidation_id)
            if status.is_terminal:
                done = invalidation.model_copy(
                    update={"status": status, "completed_at": datetime.now(timezone.utc)}
                )
                logger.info("Invalidation %s %s", invalidation.invalidation_id, status.value)
                self._update_status(done)
                return done
            remaining = deadline - self._monotonic()
            if remaining <= 0 or token.cancelled:
                logger.warning(
                    "Invalidation %s still in progress after %.0fs",
                    invalidation.invalidation_id,
                    timeout,
                )
                return invalidation.model_copy(update={"status": InvalidationStatus.IN_PROGRESS})
            if token.wait(min(self._poll_interval, remaining)):
                logger.warning(
                    "Stopped waiting for invalidation %s: %s",
                    invalidation.invalidation_id,
                    token.reason or "cancelled",
                )
                return invalidation.model_copy(update={"status": InvalidationStatus.IN_PROGRESS})

    def _poll(self, invalidation_id: str) -> InvalidationStatus:
        try:
            return map_provider_status(
                self._cdn.get_invalidation_status(self._distribution_id, invalidation_id)
            )
        except TransientProviderError as exc:
            logger.warning(
                "Status poll for invalidation %s failed (%s); retrying next interval",
                invalidation_id,
                exc,
            )
            return InvalidationStatus.IN_PROGRESS

    def status(self, invalidation_id: str) -> InvalidationStatus:
        """Current provider status; ``NotFoundError`` for an unknown id."""
        status = map_provider_status(
            self._cdn.get_invalidation_status(self._distribution_id, invalidation_id)
        )
        if status.is_terminal:
            entry = self._find(invalidation_id)
            if entry is not None and entry.status != status:
                self._set_logged_status(invalidation_id, status)
        return status

    def list_recent(self, limit: int = 10) -> list[dict]:
        """Recent invalidations as reported by the CDN."""
        return self._cdn.list_invalidations(self._distribution_id, limit)

    # ------------------------------------------------------------------
    # History log
    # ------------------------------------------------------------------

    def history(self, limit: int | None = None) -> list[InvalidationLogEntry]:
        entries = self._read_history()[0].entries
        return entries[:limit] if limit is not None else list(entries)

    def _find(self, invalidation_id: str) -> InvalidationLogEntry | None:
        for entry in self.history():
            if entry.invalidation_id == invalidation_id:
                return entry
        return None

    def _record(self, invalidation: Invalidation, deployment_id: str | None) -> None:
        entry = InvalidationLogEntry(
            invalidation_id=invalidation.invalidation_id,
            timestamp=invalidation.created_at,
            path_count=len(invalidation.requested_paths),
            estimated_cost=invalidation.estimated_cost,
            status=invalidation.status,
            deployment_id=deployment_id,
            paths=invalidation.requested_paths[:_LOGGED_PATHS],
        )

        def _append(history: InvalidationHistory) -> InvalidationHistory:
            rest = [e for e in history.entries if e.invalidation_id != entry.invalidation_id]
            return InvalidationHistory(entries=[entry, *rest][: self._history_limit])

        self._update_history(_append)

    def _update_status(self, invalidation: Invalidation) -> None:
        self._set_logged_status(invalidation.invalidation_id, invalidation.status)

    def _set_logged_status(self, invalidation_id: str, status: InvalidationStatus) -> None:
        def _mark(history: InvalidationHistory) -> InvalidationHistory:
            return InvalidationHistory(
                entries=[
                    e.model_copy(update={"status": status})
                    if e.invalidation_id == invalidation_id
                    else e
                    for e in history.entries
                ]
            )

        self._update_history(_mark)

    def _read_history(self) -> tuple[InvalidationHistory, str | None]:
        try:
            obj = self._state.get_object(self.history_key)
        except ObjectNotFoundError:
            return InvalidationHistory(), None
        return InvalidationHistory.model_validate_json(obj.data), obj.etag

    def _update_history(
        self, mutate: Callable[[InvalidationHistory], InvalidationHistory]
    ) -> None:
        for _ in range(self._index_retries):
            history, etag = self._read_history()
            data = canonical_json_bytes(mutate(history).model_dump(mode="json"))
            try:
                if etag is None:
                    self._state.put_object(self.history_key, data, if_none_match=True)
                else:
                    self._state.put_object(self.history_key, data, if_match=etag)
            except PreconditionFailedError:
                logger.debug("Invalidation history changed concurrently; re-reading")
                continue
            return
        raise IndexConflictError("Invalidation history update kept conflicting")
