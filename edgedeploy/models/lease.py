"""Advisory lease record stored as a lock object in the state store."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Lease(BaseModel):
    model_config = ConfigDict(frozen=True)

    lease_id: str
    holder: str
    acquired_at: datetime
    expires_at: datetime
    deployment_id: str | None = None
    etag: str = ""  # store ETag of the lock object this lease was written as

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
