"""Persisted Deployment records, so a later process can inspect past runs.

Layout under the state prefix::

    deployments/{deployment_id}.json   full record
    deployments/index.json             newest-first summaries, capped
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from edgedeploy.core.errors import (
    IndexConflictError,
    NotFoundError,
    ObjectNotFoundError,
    PreconditionFailedError,
)
from edgedeploy.core.hasher import canonical_json_bytes
from edgedeploy.models.deployments import Deployment, DeploymentSummary
from edgedeploy.providers.base import ObjectStore

logger = logging.getLogger(__name__)


class DeploymentIndex(BaseModel):
    model_config = ConfigDict(frozen=True)

    deployments: list[DeploymentSummary] = []


def summarize(deployment: Deployment) -> DeploymentSummary:
    return DeploymentSummary(
        deployment_id=deployment.deployment_id,
        kind=deployment.kind,
        status=deployment.status,
        started_at=deployment.started_at,
        finished_at=deployment.finished_at,
        produced_version=deployment.produced_version,
        invalidation_id=deployment.invalidation_id,
    )


class DeploymentLog:
    """Saves and loads Deployment records in the state store."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        prefix: str = ".edgedeploy/",
        limit: int = 100,
        index_retries: int = 5,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._limit = limit
        self._index_retries = index_retries

    @property
    def index_key(self) -> str:
        return f"{self._prefix}deployments/index.json"

    def record_key(self, deployment_id: str) -> str:
        return f"{self._prefix}deployments/{deployment_id}.json"

    def save(self, deployment: Deployment) -> None:
        """Write the record, then upsert its summary into the index."""
        self._store.put_object(
            self.record_key(deployment.deployment_id),
            canonical_json_bytes(deployment.model_dump(mode="json")),
            headers={"Content-Type": "application/json"},
        )
        summary = summarize(deployment)
        for _ in range(self._index_retries):
            index, etag = self._read_index()
            rest = [d for d in index.deployments if d.deployment_id != summary.deployment_id]
            entries = sorted([summary, *rest], key=lambda d: d.started_at, reverse=True)
            kept, dropped = entries[: self._limit], entries[self._limit:]
            data = canonical_json_bytes(DeploymentIndex(deployments=kept).model_dump(mode="json"))
            try:
                if etag is None:
                    self._store.put_object(self.index_key, data, if_none_match=True)
                else:
                    self._store.put_object(self.index_key, data, if_match=etag)
            except PreconditionFailedError:
                logger.debug("Deployment index changed concurrently; re-reading")
                continue
            for old in dropped:
                self._store.delete_object(self.record_key(old.deployment_id))
            return
        raise IndexConflictError("Deployment index update kept conflicting")

    def get(self, deployment_id: str) -> Deployment:
        try:
            obj = self._store.get_object(self.record_key(deployment_id))
        except ObjectNotFoundError as exc:
            raise NotFoundError(f"Deployment not found: {deployment_id}") from exc
        return Deployment.model_validate_json(obj.data)

    def list(self, limit: int | None = None) -> list[DeploymentSummary]:
        entries = self._read_index()[0].deployments
        return entries[:limit] if limit is not None else list(entries)

    def _read_index(self) -> tuple[DeploymentIndex, str | None]:
        try:
            obj = self._store.get_object(self.index_key)
        except ObjectNotFoundError:
            return DeploymentIndex(), None
        return DeploymentIndex.model_validate_json(obj.data), obj.etag
