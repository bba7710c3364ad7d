"""Narrow capability interfaces for the object store and the CDN.

Adapters implement these Protocols and translate their SDK errors into
``edgedeploy.core.errors``:

- throttling / 5xx             -> ``TransientProviderError``
- credentials / missing target -> ``DeployEnvironmentError``
- conditional write lost       -> ``PreconditionFailedError``
- missing key                  -> ``ObjectNotFoundError``
- unknown invalidation id      -> ``NotFoundError``
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

# Header carrying the sha256 of an uploaded object's bytes. S3 adapters store
# it as user metadata (``content-sha256``); rollback diffs against it.
CONTENT_HASH_HEADER = "x-amz-meta-content-sha256"


class ObjectInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    size: int


class StoredObject(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    data: bytes
    etag: str
    headers: dict[str, str] = {}


@runtime_checkable
class ObjectStore(Protocol):
    """Object store with per-object headers and conditional writes."""

    def put_object(
        self,
        key: str,
        data: bytes,
        *,
        headers: Mapping[str, str] | None = None,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:
        """Write *data* under *key*; return the new ETag.

        ``if_match`` writes only if the current ETag equals it;
        ``if_none_match`` writes only if the key does not exist.
        """
        ...

    def get_object(self, key: str) -> StoredObject: ...

    def list_objects(self, prefix: str = "") -> list[ObjectInfo]: ...

    def delete_object(self, key: str) -> None: ...

    def get_object_metadata(self, key: str) -> dict[str, str]: ...

    def check_access(self) -> None:
        """Raise ``DeployEnvironmentError`` if the store is unreachable."""
        ...


@runtime_checkable
class CdnClient(Protocol):
    """CDN with path-pattern invalidation billed per path."""

    def create_invalidation(
        self, distribution_id: str, patterns: list[str], caller_ref: str
    ) -> str: ...

    def get_invalidation_status(self, distribution_id: str, invalidation_id: str) -> str:
        """Provider status string, e.g. ``InProgress`` or ``Completed``."""
        ...

    def list_invalidations(
        self, distribution_id: str, limit: int = 10
    ) -> list[dict[str, Any]]: ...

    def check_access(self, distribution_id: str) -> None: ...
