"""Advisory deployment lease: a conditional-write lock object with expiry.

Each CI invocation is a fresh process, so mutual exclusion lives in the
state store. The lock object is created with a create-only write; an
expired lease is taken over with a write conditioned on the ETag that was
read. A live lease held by someone else fails fast.

Lock object: ``{state_prefix}lease.json``
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from edgedeploy.core.errors import (
    ConcurrentDeploymentError,
    LeaseOwnershipError,
    ObjectNotFoundError,
    PreconditionFailedError,
)
from edgedeploy.core.hasher import canonical_json_bytes
from edgedeploy.models.lease import Lease
from edgedeploy.providers.base import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 1800


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class LeaseManager:
    """Acquires, renews and releases the deployment lease.

    Parameters
    ----------
    store:
        State object store holding the lock object.
    key:
        Key of the lock object.
    ttl_seconds:
        Lease lifetime; renewal extends it from the renewal time.
    holder:
        Identity recorded on leases acquired without an explicit holder.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        store: ObjectStore,
        key: str = ".edgedeploy/lease.json",
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        holder: str = "edgedeploy",
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._key = key
        self._ttl = timedelta(seconds=ttl_seconds)
        self._holder = holder
        self._clock = clock

    @property
    def key(self) -> str:
        return self._key

    def _encode(self, lease: Lease) -> bytes:
        return canonical_json_bytes(lease.model_dump(mode="json", exclude={"etag"}))

    def status(self) -> Lease | None:
        """The lease currently stored, expired or not."""
        try:
            obj = self._store.get_object(self._key)
        except ObjectNotFoundError:
            return None
        return Lease.model_validate_json(obj.data).model_copy(update={"etag": obj.etag})

    def acquire(self, *, holder: str | None = None, deployment_id: str | None = None) -> Lease:
        """Take the lease or raise ``ConcurrentDeploymentError``."""
        now = self._clock()
        lease = Lease(
            lease_id=str(uuid4()),
            holder=holder or self._holder,
            acquired_at=now,
            expires_at=now + self._ttl,
            deployment_id=deployment_id,
        )
        data = self._encode(lease)
        existing = self.status()
        try:
            if existing is None:
                etag = self._store.put_object(
                    self._key, data, headers={"Content-Type": "application/json"},
                    if_none_match=True,
                )
            elif existing.is_expired(now):
                logger.warning(
                    "Taking over expired lease %s held by %s (expired %s)",
                    existing.lease_id,
                    existing.holder,
                    existing.expires_at.isoformat(),
                )
                etag = self._store.put_object(
                    self._key, data, headers={"Content-Type": "application/json"},
                    if_match=existing.etag,
                )
            else:
                raise ConcurrentDeploymentError(
                    f"Deployment lease held by {existing.holder} "
                    f"(deployment {existing.deployment_id or 'unknown'}) "
                    f"until {existing.expires_at.isoformat()}"
                )
        except PreconditionFailedError as exc:
            raise ConcurrentDeploymentError(
                "Deployment lease was taken by another process"
            ) from exc
        logger.info("Acquired deployment lease %s", lease.lease_id)
        return lease.model_copy(update={"etag": etag})

    def renew(self, lease: Lease) -> Lease:
        """Extend *lease*; ``LeaseOwnershipError`` if it was lost."""
        now = self._clock()
        renewed = lease.model_copy(update={"expires_at": now + self._ttl})
        try:
            etag = self._store.put_object(
                self._key,
                self._encode(renewed),
                headers={"Content-Type": "application/json"},
                if_match=lease.etag,
            )
        except PreconditionFailedError as exc:
            raise LeaseOwnershipError(f"Lease {lease.lease_id} is no longer held") from exc
        logger.debug("Renewed lease %s until %s", lease.lease_id, renewed.expires_at.isoformat())
        return renewed.model_copy(update={"etag": etag})

    def release(self, lease: Lease) -> None:
        """Delete the lock object if *lease* still owns it."""
        current = self.status()
        if current is None:
            logger.warning("Lease %s already released", lease.lease_id)
            return
        if current.lease_id != lease.lease_id:
            raise LeaseOwnershipError(
                f"Lease ownership mismatch: held by {current.lease_id}, not {lease.lease_id}"
            )
        self._store.delete_object(self._key)
        logger.info("Released deployment lease %s", lease.lease_id)

    def force_release(self) -> Lease | None:
        """Delete the lock object regardless of owner; return what was there."""
        current = self.status()
        if current is not None:
            self._store.delete_object(self._key)
            logger.warning(
                "Force-released lease %s held by %s", current.lease_id, current.holder
            )
        return current

    @contextmanager
    def held(
        self, *, holder: str | None = None, deployment_id: str | None = None
    ) -> Iterator[Lease]:
        lease = self.acquire(holder=holder, deployment_id=deployment_id)
        try:
            yield lease
        finally:
            self.release(lease)
