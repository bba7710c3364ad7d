"""Cooperative cancellation with an optional deadline.

A ``CancelToken`` is threaded explicitly through every long-running call
(uploads, invalidation polling, phases). Nothing in the pipeline relies on
implicit timeouts.
"""

from __future__ import annotations

import threading
import time
import weakref

from edgedeploy.core.errors import DeploymentCancelledError


class CancelToken:
    """A thread-safe cancellation flag with an optional monotonic deadline.

    Parameters
    ----------
    timeout:
        Seconds from now after which the token counts as cancelled.
    parent:
        Cancelling the parent cancels this token too, waking any
        ``wait`` in progress on it.
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        parent: CancelToken | None = None,
    ) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent
        self._reason = ""
        self._children: weakref.WeakSet[CancelToken] = weakref.WeakSet()
        self._lock = threading.RLock()
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: CancelToken) -> None:
        with self._lock:
            self._children.add(child)
            fired = self._event.is_set()
        if fired:
            child.cancel(self._reason)

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            self._reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    def child(self, timeout: float | None = None) -> CancelToken:
        """Return a token that expires after *timeout* or when this one fires."""
        return CancelToken(timeout, parent=self)

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = self._reason or "deadline exceeded"
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def reason(self) -> str:
        if self._parent is not None and self._parent.cancelled and not self._reason:
            return self._parent.reason
        return self._reason

    def remaining(self) -> float | None:
        """Seconds until the nearest deadline, or ``None`` if unbounded."""
        candidates = []
        if self._deadline is not None:
            candidates.append(self._deadline - time.monotonic())
        if self._parent is not None:
            parent_left = self._parent.remaining()
            if parent_left is not None:
                candidates.append(parent_left)
        if not candidates:
            return None
        return max(0.0, min(candidates))

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise DeploymentCancelledError(self.reason or "cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return True if cancelled meanwhile."""
        left = self.remaining()
        if left is not None:
            seconds = min(seconds, left)
        if self._event.wait(max(0.0, seconds)):
            return True
        return self.cancelled
