"""Post-deploy verification: is the root document reachable over HTTP?

A failed probe is reported, never raised: the orchestrator records it as
a consistency warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    url: str
    ok: bool
    status_code: int | None = None
    elapsed_ms: int = 0
    error: str | None = None

    def describe(self) -> str:
        if self.ok:
            return f"{self.url} -> {self.status_code} in {self.elapsed_ms} ms"
        if self.status_code is not None:
            return f"{self.url} -> HTTP {self.status_code}"
        return f"{self.url} unreachable: {self.error}"


def probe_root_document(
    url: str,
    *,
    timeout: float = 10.0,
    client: httpx.Client | None = None,
) -> ProbeResult:
    """GET *url* following redirects; any 2xx counts as reachable."""
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        response = http.get(url, headers={"Cache-Control": "no-cache"})
    except httpx.HTTPError as exc:
        logger.warning("Verification probe failed: %s: %s", url, exc)
        return ProbeResult(url=url, ok=False, error=str(exc) or type(exc).__name__)
    finally:
        if owns_client:
            http.close()

    elapsed_ms = int(response.elapsed.total_seconds() * 1000)
    ok = response.is_success
    if not ok:
        logger.warning("Verification probe got HTTP %d from %s", response.status_code, url)
    return ProbeResult(
        url=url,
        ok=ok,
        status_code=response.status_code,
        elapsed_ms=elapsed_ms,
    )
