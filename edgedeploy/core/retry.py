"""Bounded exponential backoff, parameterized by error classification.

One ``RetryPolicy`` is built from ``DeploymentConfig`` and injected into
PublishEngine and InvalidationExecutor. Only ``TransientProviderError`` is
retried; every other error propagates on the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.errors import DeploymentCancelledError, TransientProviderError
from edgedeploy.models.config import DeploymentConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(TransientProviderError):
    """The last transient error, after ``max_attempts`` tries."""

    def __init__(self, attempts: int, last_error: TransientProviderError) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    retry_on: tuple[type[BaseException], ...] = (TransientProviderError,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_config(cls, config: DeploymentConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay_seconds,
            max_delay=config.retry_max_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (1-based)."""
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))
        if self.jitter:
            delay *= 0.5 + random.random() / 2
        return delay

    def call(
        self,
        fn: Callable[[], T],
        *,
        description: str = "operation",
        cancel: CancelToken | None = None,
    ) -> T:
        """Run *fn* until it succeeds, raises a non-retryable error, or
        attempts run out (``RetryExhaustedError``)."""
        attempt = 0
        while True:
            attempt += 1
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                return fn()
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "%s failed after %d attempts: %s", description, attempt, exc
                    )
                    raise RetryExhaustedError(attempt, exc) from exc  # type: ignore[arg-type]
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    description,
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                if cancel is not None:
                    if cancel.wait(delay):
                        raise DeploymentCancelledError(
                            f"{description} cancelled during backoff"
                        ) from exc
                else:
                    self.sleep(delay)
