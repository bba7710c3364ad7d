"""Tests for the boto3 adapters, run against moto's in-process AWS."""

from __future__ import annotations

from collections.abc import Iterator

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError
from moto import mock_aws

from edgedeploy.core.errors import (
    DeployEnvironmentError,
    EdgeDeployError,
    NotFoundError,
    ObjectNotFoundError,
    PreconditionFailedError,
    TransientProviderError,
)
from edgedeploy.core.invalidation_executor import map_provider_status
from edgedeploy.models.invalidations import InvalidationStatus
from edgedeploy.providers.aws import (
    CloudFrontCdn,
    S3ObjectStore,
    translate_error,
    verify_aws_credentials,
)
from edgedeploy.providers.base import CONTENT_HASH_HEADER

_REGION = "us-east-1"
_BUCKET = "www-example-com"


def _client_error(code: str, status: int = 400, operation: str = "PutObject") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


@pytest.fixture
def aws_credentials(monkeypatch) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", _REGION)


@pytest.fixture
def s3_store(aws_credentials) -> Iterator[S3ObjectStore]:
    with mock_aws():
        client = boto3.client("s3", region_name=_REGION)
        client.create_bucket(Bucket=_BUCKET)
        yield S3ObjectStore(client, _BUCKET)


def _distribution_config(ref: str) -> dict:
    return {
        "CallerReference": ref,
        "Origins": {
            "Quantity": 1,
            "Items": [
                {
                    "Id": "site-origin",
                    "DomainName": f"{_BUCKET}.s3.amazonaws.com",
                    "S3OriginConfig": {"OriginAccessIdentity": ""},
                }
            ],
        },
        "DefaultCacheBehavior": {
            "TargetOriginId": "site-origin",
            "ViewerProtocolPolicy": "redirect-to-https",
            "MinTTL": 0,
            "ForwardedValues": {"QueryString": False, "Cookies": {"Forward": "none"}},
            "TrustedSigners": {"Enabled": False, "Quantity": 0},
        },
        "Comment": "edgedeploy test",
        "Enabled": True,
    }


class TestTranslateError:
    @pytest.mark.parametrize(
        "code, status, expected",
        [
            ("PreconditionFailed", 412, PreconditionFailedError),
            ("InvalidationBatchAlreadyExists", 409, PreconditionFailedError),
            ("NoSuchKey", 404, NotFoundError),
            ("AccessDenied", 403, DeployEnvironmentError),
            ("NoSuchDistribution", 404, DeployEnvironmentError),
            ("SlowDown", 503, TransientProviderError),
            ("TooManyInvalidationsInProgress", 400, TransientProviderError),
            ("WeirdServerThing", 500, TransientProviderError),
            ("MalformedXML", 400, EdgeDeployError),
        ],
    )
    def test_client_errors(self, code, status, expected):
        error = translate_error(_client_error(code, status), "ctx")
        assert type(error) is expected
        assert code in str(error)

    def test_not_found_subclass(self):
        error = translate_error(_client_error("404", 404), "ctx", not_found=ObjectNotFoundError)
        assert isinstance(error, ObjectNotFoundError)

    def test_missing_credentials(self):
        assert isinstance(translate_error(NoCredentialsError(), "ctx"), DeployEnvironmentError)

    def test_connection_errors_are_transient(self):
        exc = EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")
        assert isinstance(translate_error(exc, "ctx"), TransientProviderError)


class TestS3ObjectStore:
    def test_put_get_with_headers(self, s3_store):
        s3_store.put_object(
            "index.html",
            b"<html/>",
            headers={
                "Cache-Control": "public, max-age=600, must-revalidate",
                "Content-Type": "text/html; charset=utf-8",
                CONTENT_HASH_HEADER: "abc123",
            },
        )
        obj = s3_store.get_object("index.html")
        assert obj.data == b"<html/>"
        assert obj.headers["Cache-Control"] == "public, max-age=600, must-revalidate"
        assert obj.headers["Content-Type"] == "text/html; charset=utf-8"
        assert obj.headers[CONTENT_HASH_HEADER] == "abc123"
        assert obj.etag

    def test_metadata(self, s3_store):
        s3_store.put_object("a.css", b"body{}", headers={CONTENT_HASH_HEADER: "h"})
        meta = s3_store.get_object_metadata("a.css")
        assert meta[CONTENT_HASH_HEADER] == "h"
        assert meta["Content-Length"] == "6"

    def test_missing_key(self, s3_store):
        with pytest.raises(ObjectNotFoundError):
            s3_store.get_object("missing.html")
        with pytest.raises(ObjectNotFoundError):
            s3_store.get_object_metadata("missing.html")

    def test_list_and_delete(self, s3_store):
        for key in ("a.html", "blog/b.html", ".edgedeploy/versions/index.json"):
            s3_store.put_object(key, b"x")
        assert [o.key for o in s3_store.list_objects("blog/")] == ["blog/b.html"]
        assert len(s3_store.list_objects()) == 3
        s3_store.delete_object("a.html")
        assert "a.html" not in [o.key for o in s3_store.list_objects()]

    def test_check_access(self, s3_store):
        s3_store.check_access()

    def test_check_access_missing_bucket(self, s3_store):
        client = boto3.client("s3", region_name=_REGION)
        with pytest.raises(DeployEnvironmentError):
            S3ObjectStore(client, "no-such-bucket-here").check_access()


class TestCloudFrontCdn:
    @pytest.fixture
    def cloudfront(self, aws_credentials) -> Iterator[tuple[CloudFrontCdn, str]]:
        with mock_aws():
            client = boto3.client("cloudfront", region_name=_REGION)
            dist = client.create_distribution(DistributionConfig=_distribution_config("t1"))
            yield CloudFrontCdn(client), dist["Distribution"]["Id"]

    def test_invalidation_lifecycle(self, cloudfront):
        cdn, dist_id = cloudfront
        inv_id = cdn.create_invalidation(dist_id, ["/index.html", "/blog/*"], "edgedeploy-d1")
        status = map_provider_status(cdn.get_invalidation_status(dist_id, inv_id))
        assert status in (InvalidationStatus.IN_PROGRESS, InvalidationStatus.COMPLETED)
        listed = cdn.list_invalidations(dist_id, limit=5)
        assert inv_id in [item["id"] for item in listed]

    def test_check_access(self, cloudfront):
        cdn, dist_id = cloudfront
        cdn.check_access(dist_id)
        with pytest.raises(DeployEnvironmentError):
            cdn.check_access("ENOSUCHDIST")


class TestCredentials:
    def test_verify(self, aws_credentials):
        with mock_aws():
            arn = verify_aws_credentials(boto3.client("sts", region_name=_REGION))
        assert arn.startswith("arn:aws:")
