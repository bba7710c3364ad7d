"""Object-store and CDN providers, selected by ``DeploymentConfig.backend``."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from edgedeploy.models.config import DeploymentConfig
from edgedeploy.providers.base import (
    CONTENT_HASH_HEADER,
    CdnClient,
    ObjectInfo,
    ObjectStore,
    StoredObject,
)
from edgedeploy.providers.local import LocalCdn, LocalObjectStore

logger = logging.getLogger(__name__)


@dataclass
class Providers:
    """The capabilities one deployment talks to.

    ``site_store`` serves the site; ``state_store`` holds versions, the
    invalidation log, deployment records and the lease. They may be the
    same store. ``credential_check`` returns a caller identity or raises
    ``DeployEnvironmentError``.
    """

    site_store: ObjectStore
    state_store: ObjectStore
    cdn: CdnClient
    credential_check: Callable[[], str]


def build_providers(config: DeploymentConfig) -> Providers:
    """Construct providers for the configured backend."""
    if config.backend == "aws":
        return _build_aws(config)
    return _build_local(config)


def _build_local(config: DeploymentConfig) -> Providers:
    site_store = LocalObjectStore(config.local_site_dir)
    if config.shares_site_bucket:
        state_store: ObjectStore = site_store
    else:
        state_store = LocalObjectStore(config.local_state_dir)
    cdn = LocalCdn(config.local_state_dir / config.state_prefix / "cdn" / "invalidations.json")
    logger.debug("Using local providers at %s", config.local_site_dir)
    return Providers(
        site_store=site_store,
        state_store=state_store,
        cdn=cdn,
        credential_check=lambda: "local",
    )


def _build_aws(config: DeploymentConfig) -> Providers:
    import boto3

    from edgedeploy.providers.aws import CloudFrontCdn, S3ObjectStore, verify_aws_credentials

    session = boto3.session.Session(region_name=config.region)
    s3 = session.client("s3")
    site_store = S3ObjectStore(s3, config.bucket)
    if config.shares_site_bucket:
        state_store: ObjectStore = site_store
    else:
        state_store = S3ObjectStore(s3, config.effective_state_bucket)
    cdn = CloudFrontCdn(session.client("cloudfront"))
    sts = session.client("sts")
    logger.debug("Using AWS providers for bucket %s", config.bucket)
    return Providers(
        site_store=site_store,
        state_store=state_store,
        cdn=cdn,
        credential_check=lambda: verify_aws_credentials(sts),
    )


__all__ = [
    "CONTENT_HASH_HEADER",
    "CdnClient",
    "ObjectInfo",
    "ObjectStore",
    "Providers",
    "StoredObject",
    "build_providers",
]
