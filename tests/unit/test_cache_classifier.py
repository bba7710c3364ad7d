"""Tests for CacheClassifier — one fixed cache policy per path."""

from __future__ import annotations

import pytest

from edgedeploy.core.cache_classifier import CacheClassifier, classify, content_type_for
from edgedeploy.models.cache import CacheClass
from edgedeploy.models.config import DeploymentConfig


@pytest.fixture
def classifier() -> CacheClassifier:
    return CacheClassifier()


class TestCacheClasses:
    @pytest.mark.parametrize(
        "path",
        ["index.html", "blog/post.html", "legacy/page.htm", "about", "docs/getting-started"],
    )
    def test_documents(self, classifier: CacheClassifier, path: str):
        policy = classifier.classify(path)
        assert policy.cache_class == CacheClass.DOCUMENT
        assert policy.cache_control == "public, max-age=600, must-revalidate"
        assert policy.immutable is False

    @pytest.mark.parametrize(
        "path",
        [
            "app.3f2a1b.js",
            "_next/static/chunks/main-abc123.js",
            "styles.9c8d7e.css",
            "images/logo.png",
            "fonts/inter.woff2",
            "app.3f2a1b.js.map",
        ],
    )
    def test_immutable_assets(self, classifier: CacheClassifier, path: str):
        policy = classifier.classify(path)
        assert policy.cache_class == CacheClass.IMMUTABLE_ASSET
        assert policy.cache_control == "public, max-age=31536000, immutable"
        assert policy.immutable is True
        assert policy.max_age_seconds == 31536000

    @pytest.mark.parametrize(
        "path", ["manifest.json", "asset-manifest.json", "site.webmanifest", "data/feed.json"]
    )
    def test_manifests(self, classifier: CacheClassifier, path: str):
        policy = classifier.classify(path)
        assert policy.cache_class == CacheClass.MANIFEST
        assert policy.cache_control == "public, max-age=86400"

    @pytest.mark.parametrize("path", ["sw.js", "service-worker.js", "api/status.json", "api/v1/users"])
    def test_no_store(self, classifier: CacheClassifier, path: str):
        policy = classifier.classify(path)
        assert policy.cache_class == CacheClass.NO_STORE
        assert policy.cache_control == "no-cache, no-store, must-revalidate"
        assert policy.max_age_seconds == 0

    def test_nested_service_worker_name_is_an_ordinary_script(self, classifier: CacheClassifier):
        assert classifier.cache_class("vendor/sw.js") == CacheClass.IMMUTABLE_ASSET

    def test_unknown_extension_falls_back_to_manifest_policy(self, classifier: CacheClassifier):
        assert classifier.cache_class("robots.txt") == CacheClass.MANIFEST
        assert classifier.cache_class("archive.tar.gz") == CacheClass.MANIFEST

    def test_leading_slash_and_backslashes_are_normalized(self, classifier: CacheClassifier):
        assert classifier.classify("/index.html") == classifier.classify("index.html")
        assert classifier.classify("blog\\post.html") == classifier.classify("blog/post.html")

    def test_extension_match_is_case_insensitive(self, classifier: CacheClassifier):
        assert classifier.cache_class("INDEX.HTML") == CacheClass.DOCUMENT
        assert classifier.cache_class("Logo.PNG") == CacheClass.IMMUTABLE_ASSET


class TestPolicyDetails:
    def test_deterministic(self, classifier: CacheClassifier):
        assert classifier.classify("app.3f2a1b.js") == classifier.classify("app.3f2a1b.js")
        assert classify("index.html") == classifier.classify("index.html")

    def test_content_types(self):
        assert content_type_for("index.html") == "text/html; charset=utf-8"
        assert content_type_for("about") == "text/html; charset=utf-8"
        assert content_type_for("app.js") == "application/javascript"
        assert content_type_for("styles.css") == "text/css"
        assert content_type_for("logo.svg") == "image/svg+xml"
        assert content_type_for("mystery.zzz-unknown") == "application/octet-stream"

    def test_headers(self, classifier: CacheClassifier):
        headers = classifier.classify("styles.9c8d7e.css").headers()
        assert headers == {
            "Cache-Control": "public, max-age=31536000, immutable",
            "Content-Type": "text/css",
        }

    def test_ttls_come_from_config(self):
        classifier = CacheClassifier(DeploymentConfig(document_max_age=60, manifest_max_age=300))
        assert classifier.classify("index.html").cache_control == "public, max-age=60, must-revalidate"
        assert classifier.classify("manifest.json").cache_control == "public, max-age=300"
