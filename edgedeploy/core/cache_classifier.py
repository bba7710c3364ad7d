"""Map a site-relative file path to its cache policy.

Classification looks only at the path: the same path always yields the
same policy, and every path yields one.

Priority, first match wins:
    1. no_store        service worker at the site root, anything under ``api/``
    2. manifest        ``*.json`` and ``*.webmanifest``
    3. immutable_asset hashed scripts, styles, images, fonts, source maps
    4. document        ``.html``/``.htm`` and extensionless routes
    5. fallback        the medium-TTL manifest policy
"""

from __future__ import annotations

import mimetypes
from posixpath import basename, splitext

from edgedeploy.core.hasher import normalize_rel_path
from edgedeploy.models.cache import CacheClass, CachePolicy
from edgedeploy.models.config import DeploymentConfig

SERVICE_WORKERS = frozenset({"sw.js", "service-worker.js"})
NO_STORE_PREFIXES = ("api/",)

MANIFEST_NAMES = frozenset({"manifest.json", "asset-manifest.json"})
MANIFEST_EXTENSIONS = frozenset({".json", ".webmanifest"})

IMMUTABLE_EXTENSIONS = frozenset({
    ".js", ".mjs", ".css", ".map",
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".svg", ".webp", ".avif",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
})

DOCUMENT_EXTENSIONS = frozenset({".html", ".htm", ""})

NO_STORE_CACHE_CONTROL = "no-cache, no-store, must-revalidate"

# mimetypes tables differ between platforms; pin the ones browsers care about.
_CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html; charset=utf-8",
    ".htm": "text/html; charset=utf-8",
    "": "text/html; charset=utf-8",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".webmanifest": "application/manifest+json",
    ".map": "application/json",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".txt": "text/plain; charset=utf-8",
    ".xml": "application/xml",
}


def content_type_for(path: str) -> str:
    ext = splitext(basename(path))[1].lower()
    if ext in _CONTENT_TYPES:
        return _CONTENT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file{ext}")
    return guessed or "application/octet-stream"


class CacheClassifier:
    """Assigns a ``CachePolicy`` to every path.

    Parameters
    ----------
    config:
        Supplies the document, manifest and immutable TTLs.
    """

    def __init__(self, config: DeploymentConfig | None = None) -> None:
        config = config or DeploymentConfig()
        self._document = CachePolicy(
            cache_class=CacheClass.DOCUMENT,
            cache_control=f"public, max-age={config.document_max_age}, must-revalidate",
            max_age_seconds=config.document_max_age,
        )
        self._manifest = CachePolicy(
            cache_class=CacheClass.MANIFEST,
            cache_control=f"public, max-age={config.manifest_max_age}",
            max_age_seconds=config.manifest_max_age,
        )
        self._immutable = CachePolicy(
            cache_class=CacheClass.IMMUTABLE_ASSET,
            cache_control=f"public, max-age={config.immutable_max_age}, immutable",
            immutable=True,
            max_age_seconds=config.immutable_max_age,
        )
        self._no_store = CachePolicy(
            cache_class=CacheClass.NO_STORE,
            cache_control=NO_STORE_CACHE_CONTROL,
            max_age_seconds=0,
        )

    def classify(self, path: str) -> CachePolicy:
        """Return the policy for *path*. Never raises."""
        rel = normalize_rel_path(str(path))
        name = basename(rel).lower()
        ext = splitext(name)[1]
        base = self._base_policy(rel.lower(), name, ext)
        return base.model_copy(update={"content_type": content_type_for(rel)})

    def _base_policy(self, rel: str, name: str, ext: str) -> CachePolicy:
        if rel in SERVICE_WORKERS or rel.startswith(NO_STORE_PREFIXES):
            return self._no_store
        if name in MANIFEST_NAMES or ext in MANIFEST_EXTENSIONS:
            return self._manifest
        if ext in IMMUTABLE_EXTENSIONS:
            return self._immutable
        if ext in DOCUMENT_EXTENSIONS:
            return self._document
        return self._manifest

    def cache_class(self, path: str) -> CacheClass:
        return self.classify(path).cache_class


_default = CacheClassifier()


def classify(path: str) -> CachePolicy:
    """Classify *path* with the default TTLs."""
    return _default.classify(path)
