"""Tests for the S3-compatible adapter with a mocked boto3 client."""

import io
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from cloudshuttle.cancellation import CancellationToken
from cloudshuttle.exceptions import AuthError, ConfigurationError, NetworkError, NotFound, RateLimited, StorageError
from cloudshuttle.models import Cursor, Profile, ProviderType
from cloudshuttle.providers.s3compat import S3CompatAdapter, translate_client_error


def client_error(code, status=400, message=""):
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "TestOperation",
    )


@pytest.fixture
def adapter(profile, settings):
    adapter = S3CompatAdapter(profile, settings)
    adapter._client = Mock()
    return adapter


# ============================================================================
# Tests: Construction
# ============================================================================

class TestConstruction:
    def test_r2_endpoint_from_account(self, profile):
        adapter = S3CompatAdapter(profile)
        assert adapter.endpoint_url == "https://abc123.r2.cloudflarestorage.com"
        assert adapter.region == "auto"

    def test_explicit_endpoint(self):
        profile = Profile(
            id="minio",
            type=ProviderType.S3COMPAT,
            bucket="data",
            region="us-east-1",
            credentials={
                "access_key_id": "minio",
                "secret_access_key": "minio123",
                "endpoint_url": "http://localhost:9000/",
            },
        )
        adapter = S3CompatAdapter(profile)
        assert adapter.endpoint_url == "http://localhost:9000"
        assert adapter.default_public_url("a.txt") == "http://localhost:9000/data/a.txt"

    def test_missing_endpoint_and_account(self):
        profile = Profile(
            id="bad",
            type=ProviderType.S3COMPAT,
            bucket="data",
            credentials={"access_key_id": "a", "secret_access_key": "b"},
        )
        with pytest.raises(ConfigurationError, match="account_id"):
            S3CompatAdapter(profile)

    def test_missing_bucket(self, profile):
        profile.bucket = None
        with pytest.raises(ConfigurationError, match="bucket"):
            S3CompatAdapter(profile)


# ============================================================================
# Tests: Error translation
# ============================================================================

class TestTranslateClientError:
    @pytest.mark.parametrize("code,status,expected", [
        ("AccessDenied", 403, AuthError),
        ("SignatureDoesNotMatch", 403, AuthError),
        ("NoSuchKey", 404, NotFound),
        ("SlowDown", 503, RateLimited),
        ("InternalError", 500, NetworkError),
        ("Weird", 0, StorageError),
    ])
    def test_mapping(self, code, status, expected):
        error = translate_client_error(client_error(code, status), "Doing thing")
        assert type(error) is expected
        assert str(error).startswith("Doing thing failed")

    def test_unknown_code_uses_status(self):
        assert isinstance(translate_client_error(client_error("Custom", 404), "x"), NotFound)

    def test_adapter_wraps_connection_errors(self, adapter):
        adapter._client.head_bucket.side_effect = EndpointConnectionError(endpoint_url="https://x")
        with pytest.raises(NetworkError):
            adapter.test_connection()


# ============================================================================
# Tests: Listing
# ============================================================================

class TestListing:
    def test_folder_listing_with_continuation(self, adapter):
        modified = datetime(2024, 1, 2, tzinfo=timezone.utc)
        adapter._client.list_objects_v2.return_value = {
            "CommonPrefixes": [{"Prefix": "photos/2024/"}],
            "Contents": [{"Key": "photos/a.jpg", "Size": 10, "LastModified": modified, "ETag": '"abc"'}],
            "IsTruncated": True,
            "NextContinuationToken": "next-1",
        }

        page = adapter.list("photos/", None, "/")

        adapter._client.list_objects_v2.assert_called_once_with(
            Bucket="media", Prefix="photos/", MaxKeys=1000, Delimiter="/",
        )
        assert page.entries[0].is_folder
        assert page.entries[0].key == "photos/2024/"
        assert page.entries[1].etag == "abc"
        assert page.entries[1].last_modified == modified
        assert page.next_cursor == Cursor(provider=ProviderType.S3COMPAT, token="next-1")

    def test_cursor_is_passed_back(self, adapter):
        adapter._client.list_objects_v2.return_value = {"IsTruncated": False}

        page = adapter.list("", Cursor(provider=ProviderType.S3COMPAT, token="next-1"))

        kwargs = adapter._client.list_objects_v2.call_args.kwargs
        assert kwargs["ContinuationToken"] == "next-1"
        assert "Delimiter" not in kwargs
        assert not page.has_more

    def test_foreign_cursor_rejected(self, adapter):
        with pytest.raises(ValueError):
            adapter.list("", Cursor(provider=ProviderType.OSS, token="x"))

    def test_listing_error(self, adapter):
        adapter._client.list_objects_v2.side_effect = client_error("NoSuchBucket", 404)
        with pytest.raises(NotFound):
            adapter.list("")


# ============================================================================
# Tests: Objects
# ============================================================================

class TestObjects:
    def test_delete_many_ignores_missing_keys(self, adapter):
        adapter._client.delete_objects.return_value = {
            "Errors": [{"Key": "gone", "Code": "NoSuchKey"}],
        }
        adapter.delete_many(["gone", "a"])

        request = adapter._client.delete_objects.call_args.kwargs["Delete"]
        assert request == {"Objects": [{"Key": "gone"}, {"Key": "a"}], "Quiet": True}

    def test_delete_many_reports_errors(self, adapter):
        adapter._client.delete_objects.return_value = {
            "Errors": [{"Key": "locked", "Code": "AccessDenied", "Message": "nope"}],
        }
        with pytest.raises(StorageError, match="locked"):
            adapter.delete_many(["locked"])

    def test_delete_many_rejects_oversized_batch(self, adapter):
        with pytest.raises(ValueError):
            adapter.delete_many([str(i) for i in range(1001)])

    def test_delete_missing_key_is_success(self, adapter):
        adapter._client.delete_object.side_effect = client_error("NoSuchKey", 404)
        adapter.delete("gone")

    def test_presign_uses_public_domain(self, adapter):
        adapter.profile.public_domain = "cdn.example.com/"
        assert adapter.presign("a b.jpg") == "https://cdn.example.com/a b.jpg"
        adapter._client.generate_presigned_url.assert_not_called()

    def test_presign_signs_url(self, adapter):
        adapter._client.generate_presigned_url.return_value = "https://signed"

        assert adapter.presign("a.jpg", 60) == "https://signed"
        adapter._client.generate_presigned_url.assert_called_once_with(
            "get_object", Params={"Bucket": "media", "Key": "a.jpg"}, ExpiresIn=60,
        )

    def test_download_streams_body(self, adapter, temp_dir):
        adapter._client.get_object.return_value = {
            "Body": io.BytesIO(b"hello world"),
            "ContentLength": 11,
        }
        seen = []
        destination = temp_dir / "out" / "a.txt"

        adapter.download("a.txt", str(destination), CancellationToken(), lambda done, total: seen.append((done, total)))

        assert destination.read_bytes() == b"hello world"
        assert seen[-1] == (11, 11)

    def test_multipart_primitives(self, adapter):
        adapter._client.create_multipart_upload.return_value = {"UploadId": "u1"}
        adapter._client.upload_part.return_value = {"ETag": '"p1"'}
        adapter._client.complete_multipart_upload.return_value = {"ETag": '"final"'}

        assert adapter._create_multipart("big.bin") == "u1"
        assert adapter._upload_part("big.bin", "u1", 1, b"data") == '"p1"'
        assert adapter._complete_multipart("big.bin", "u1", [{"part_number": 1, "etag": '"p1"'}]) == "final"

        parts = adapter._client.complete_multipart_upload.call_args.kwargs["MultipartUpload"]["Parts"]
        assert parts == [{"PartNumber": 1, "ETag": '"p1"'}]

    def test_close_releases_client(self, adapter):
        client = adapter._client
        adapter.close()
        client.close.assert_called_once()
        assert adapter._client is None
