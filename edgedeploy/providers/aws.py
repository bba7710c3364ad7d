"""boto3 adapters: S3 object store, CloudFront CDN, STS credential check.

botocore ``ClientError`` codes are translated into the edgedeploy error
taxonomy here and nowhere else.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from edgedeploy.core.errors import (
    DeployEnvironmentError,
    EdgeDeployError,
    NotFoundError,
    ObjectNotFoundError,
    PreconditionFailedError,
    TransientProviderError,
)
from edgedeploy.providers.base import ObjectInfo, StoredObject

logger = logging.getLogger(__name__)

_META_PREFIX = "x-amz-meta-"

_TRANSIENT_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "InternalError",
    "TooManyInvalidationsInProgress",
    "500",
    "502",
    "503",
    "504",
})

_ENVIRONMENT_CODES = frozenset({
    "AccessDenied",
    "AccessDeniedException",
    "InvalidAccessKeyId",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "ExpiredTokenException",
    "UnrecognizedClientException",
    "NoSuchBucket",
    "NoSuchDistribution",
    "403",
})

_PRECONDITION_CODES = frozenset({
    "PreconditionFailed",
    "ConditionalRequestConflict",
    "InvalidationBatchAlreadyExists",
    "412",
})

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "NoSuchInvalidation", "404"})


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _http_status(exc: ClientError) -> int:
    return int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def translate_error(
    exc: Exception,
    context: str,
    *,
    not_found: type[NotFoundError] = NotFoundError,
) -> EdgeDeployError:
    """Map a botocore exception onto the edgedeploy taxonomy."""
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return DeployEnvironmentError(f"{context}: AWS credentials not available: {exc}")
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return TransientProviderError(f"{context}: {exc}")
    if isinstance(exc, ClientError):
        code = _error_code(exc)
        message = f"{context}: {code}: {exc}"
        if code in _PRECONDITION_CODES:
            return PreconditionFailedError(message)
        if code in _NOT_FOUND_CODES:
            return not_found(message)
        if code in _ENVIRONMENT_CODES:
            return DeployEnvironmentError(message)
        if code in _TRANSIENT_CODES or _http_status(exc) >= 500:
            return TransientProviderError(message)
        return EdgeDeployError(message)
    if isinstance(exc, BotoCoreError):
        return TransientProviderError(f"{context}: {exc}")
    return EdgeDeployError(f"{context}: {exc}")


def _split_headers(headers: Mapping[str, str]) -> dict[str, Any]:
    """Turn HTTP-style headers into ``put_object`` keyword arguments."""
    kwargs: dict[str, Any] = {}
    metadata: dict[str, str] = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower == "cache-control":
            kwargs["CacheControl"] = value
        elif lower == "content-type":
            kwargs["ContentType"] = value
        elif lower.startswith(_META_PREFIX):
            metadata[lower[len(_META_PREFIX):]] = value
    if metadata:
        kwargs["Metadata"] = metadata
    return kwargs


def _join_headers(response: Mapping[str, Any]) -> dict[str, str]:
    headers: dict[str, str] = {}
    if response.get("CacheControl"):
        headers["Cache-Control"] = response["CacheControl"]
    if response.get("ContentType"):
        headers["Content-Type"] = response["ContentType"]
    for name, value in (response.get("Metadata") or {}).items():
        headers[f"{_META_PREFIX}{name.lower()}"] = value
    return headers


class S3ObjectStore:
    """S3 bucket as an ``ObjectStore``.

    Parameters
    ----------
    client:
        A boto3 S3 client.
    bucket:
        Bucket name.
    """

    def __init__(self, client: Any, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    def put_object(
        self,
        key: str,
        data: bytes,
        *,
        headers: Mapping[str, str] | None = None,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Key": key, "Body": data}
        kwargs.update(_split_headers(headers or {}))
        if if_match is not None:
            kwargs["IfMatch"] = if_match
        if if_none_match:
            kwargs["IfNoneMatch"] = "*"
        try:
            response = self._client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, f"put s3://{self._bucket}/{key}") from exc
        logger.debug("S3ObjectStore: put s3://%s/%s", self._bucket, key)
        return str(response.get("ETag", ""))

    def get_object(self, key: str) -> StoredObject:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            data = response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(
                exc, f"get s3://{self._bucket}/{key}", not_found=ObjectNotFoundError
            ) from exc
        return StoredObject(
            key=key,
            data=data,
            etag=str(response.get("ETag", "")),
            headers=_join_headers(response),
        )

    def list_objects(self, prefix: str = "") -> list[ObjectInfo]:
        found: list[ObjectInfo] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    found.append(ObjectInfo(key=item["Key"], size=int(item.get("Size", 0))))
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, f"list s3://{self._bucket}/{prefix}") from exc
        return found

    def delete_object(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, f"delete s3://{self._bucket}/{key}") from exc

    def get_object_metadata(self, key: str) -> dict[str, str]:
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(
                exc, f"head s3://{self._bucket}/{key}", not_found=ObjectNotFoundError
            ) from exc
        headers = _join_headers(response)
        headers["ETag"] = str(response.get("ETag", ""))
        headers["Content-Length"] = str(response.get("ContentLength", 0))
        return headers

    def check_access(self) -> None:
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except (ClientError, BotoCoreError) as exc:
            error = translate_error(exc, f"head bucket {self._bucket}")
            if isinstance(error, NotFoundError):
                error = DeployEnvironmentError(f"Bucket not found: {self._bucket}")
            raise error from exc


class CloudFrontCdn:
    """CloudFront distribution invalidations as a ``CdnClient``."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def create_invalidation(
        self, distribution_id: str, patterns: list[str], caller_ref: str
    ) -> str:
        try:
            response = self._client.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(patterns), "Items": list(patterns)},
                    "CallerReference": caller_ref,
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, f"create invalidation on {distribution_id}") from exc
        return str(response["Invalidation"]["Id"])

    def get_invalidation_status(self, distribution_id: str, invalidation_id: str) -> str:
        try:
            response = self._client.get_invalidation(
                DistributionId=distribution_id, Id=invalidation_id
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, f"get invalidation {invalidation_id}") from exc
        return str(response["Invalidation"]["Status"])

    def list_invalidations(self, distribution_id: str, limit: int = 10) -> list[dict[str, Any]]:
        try:
            response = self._client.list_invalidations(
                DistributionId=distribution_id, MaxItems=str(limit)
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, f"list invalidations on {distribution_id}") from exc
        items = response.get("InvalidationList", {}).get("Items", []) or []
        return [
            {
                "id": item["Id"],
                "status": item["Status"],
                "create_time": str(item.get("CreateTime", "")),
            }
            for item in items
        ]

    def check_access(self, distribution_id: str) -> None:
        try:
            self._client.get_distribution(Id=distribution_id)
        except (ClientError, BotoCoreError) as exc:
            error = translate_error(exc, f"get distribution {distribution_id}")
            if isinstance(error, NotFoundError):
                error = DeployEnvironmentError(f"Distribution not found: {distribution_id}")
            raise error from exc


def verify_aws_credentials(sts_client: Any) -> str:
    """Return the caller ARN, or raise ``DeployEnvironmentError``."""
    try:
        identity = sts_client.get_caller_identity()
    except (ClientError, BotoCoreError) as exc:
        error = translate_error(exc, "sts get-caller-identity")
        raise DeployEnvironmentError(str(error)) from exc
    return str(identity.get("Arn", ""))
