"""Cache policy value types — one fixed Cache-Control class per file."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class CacheClass(str, Enum):
    """The fixed set of cache classes a published file can belong to."""

    DOCUMENT = "document"
    IMMUTABLE_ASSET = "immutable_asset"
    MANIFEST = "manifest"
    NO_STORE = "no_store"


class CachePolicy(BaseModel):
    """Headers applied to a single uploaded object.

    ``cache_control`` is written verbatim as the object's Cache-Control
    header; the CDN honours it at the edge.
    """

    model_config = ConfigDict(frozen=True)

    cache_class: CacheClass
    cache_control: str
    immutable: bool = False
    max_age_seconds: int = 0
    content_type: str = "application/octet-stream"

    def headers(self) -> dict[str, str]:
        """Return the HTTP headers for an upload under this policy."""
        return {
            "Cache-Control": self.cache_control,
            "Content-Type": self.content_type,
        }
