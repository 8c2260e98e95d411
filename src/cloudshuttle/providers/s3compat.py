"""
S3-compatible storage provider (Cloudflare R2, MinIO, AWS S3, ...).

Features:
- Multipart upload with resumable checkpoints (5 MiB parts)
- Continuation-token pagination, flat or one level with common prefixes
- Batched deletes through DeleteObjects (1000 keys per request)
- Presigned GET URLs, or the public URL when a custom domain is set
- Streaming downloads
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..cancellation import CancellationToken
from ..exceptions import AuthError, NetworkError, NotFound, RateLimited, StorageError, error_for_status
from ..models import ListPage, ObjectEntry, ProviderType
from .base import Capabilities, DownloadProgressCallback, read_chunks, write_stream
from .multipart import ChunkedAdapter

logger = logging.getLogger(__name__)

try:
    import boto3
    from botocore.config import Config
    from botocore.exceptions import (
        BotoCoreError,
        ClientError,
        ConnectionError as BotoConnectionError,
        HTTPClientError,
        NoCredentialsError,
    )
    HAS_BOTO3 = True
except ImportError:
    HAS_BOTO3 = False
    logger.warning("boto3 not installed. S3-compatible provider will not be available.")

R2_ENDPOINT = "https://{account_id}.r2.cloudflarestorage.com"

_AUTH_CODES = {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "InvalidToken", "ExpiredToken"}
_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchUpload", "NotFound", "404"}
_THROTTLE_CODES = {"SlowDown", "Throttling", "ThrottlingException", "TooManyRequests", "RequestLimitExceeded"}


def translate_client_error(error: "ClientError", action: str) -> StorageError:
    """Map a botocore ClientError onto the storage error taxonomy."""
    info = error.response.get("Error", {})
    code = str(info.get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    message = f"{action} failed: {info.get('Message') or code or error}"
    if code in _AUTH_CODES:
        return AuthError(message)
    if code in _NOT_FOUND_CODES:
        return NotFound(message)
    if code in _THROTTLE_CODES:
        return RateLimited(message)
    return error_for_status(status, message)


class S3CompatAdapter(ChunkedAdapter):
    """Adapter for any endpoint speaking the S3 API."""

    provider_type = ProviderType.S3COMPAT
    capabilities = Capabilities(chunked_upload=True, presign=True)

    def __init__(self, profile, settings=None):
        """
        Initialize the S3-compatible adapter.

        The endpoint comes from ``endpoint_url`` or, for R2, is built from
        ``account_id``.

        Raises:
            ImportError: If boto3 is not installed
            ConfigurationError: If credentials, endpoint or bucket are missing
        """
        if not HAS_BOTO3:
            raise ImportError("boto3 is required for S3 support. Install with: pip install boto3")
        super().__init__(profile, settings)

        creds = self._require("access_key_id", "secret_access_key")
        self.bucket = self._require_bucket()
        endpoint = self.profile.credential("endpoint_url")
        if not endpoint:
            endpoint = R2_ENDPOINT.format(account_id=self._require("account_id")["account_id"])
        self.endpoint_url = endpoint.rstrip("/")
        self.region = (self.profile.region or "auto").strip()
        self._access_key_id = creds["access_key_id"]
        self._secret_access_key = creds["secret_access_key"]
        self._client = None

    @property
    def client(self):
        """Lazily created boto3 S3 client with SDK retries disabled."""
        if self._client is None:
            config = Config(
                connect_timeout=self.settings.connect_timeout,
                read_timeout=self.settings.read_timeout,
                retries={"max_attempts": 1, "mode": "standard"},
                max_pool_connections=max(10, self.settings.part_workers * 2),
            )
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                region_name=self.region,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                config=config,
            )
            logger.info(f"Created S3 client for {self.endpoint_url} (bucket {self.bucket})")
        return self._client

    @contextmanager
    def _translate(self, action: str) -> Iterator[None]:
        try:
            yield
        except ClientError as e:
            raise translate_client_error(e, action) from e
        except NoCredentialsError as e:
            raise AuthError(f"{action} failed: {e}") from e
        except (BotoConnectionError, HTTPClientError) as e:
            raise NetworkError(f"{action} failed: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"{action} failed: {e}") from e

    def test_connection(self) -> None:
        with self._translate(f"Checking bucket {self.bucket}"):
            self.client.head_bucket(Bucket=self.bucket)
        logger.info(f"Connection to {self.bucket} verified")

    def default_public_url(self, key: str) -> Optional[str]:
        return f"{self.endpoint_url}/{self.bucket}/{key}"

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list(self, prefix="", cursor=None, delimiter=None) -> ListPage:
        params: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Prefix": prefix or "",
            "MaxKeys": self.settings.list_page_size,
        }
        if delimiter:
            params["Delimiter"] = delimiter
        token = self._unwrap(cursor)
        if token:
            params["ContinuationToken"] = token

        with self._translate(f"Listing {prefix or '/'}"):
            response = self.client.list_objects_v2(**params)

        entries = [ObjectEntry.folder(p["Prefix"]) for p in response.get("CommonPrefixes", [])]
        for obj in response.get("Contents", []):
            entries.append(ObjectEntry(
                key=obj["Key"],
                size=obj.get("Size", 0),
                last_modified=obj.get("LastModified"),
                etag=(obj.get("ETag") or "").strip('"') or None,
                public_url=self.public_url(obj["Key"]),
            ))

        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        logger.debug(f"Listed {len(entries)} entries under '{prefix}' (more: {bool(next_token)})")
        return ListPage(entries=entries, next_cursor=self._cursor(next_token))

    # ------------------------------------------------------------------
    # Upload primitives
    # ------------------------------------------------------------------

    def _put_file(self, key: str, source_path: str) -> Optional[str]:
        with self._translate(f"Uploading {key}"), open(source_path, "rb") as f:
            response = self.client.put_object(Bucket=self.bucket, Key=key, Body=f)
        return (response.get("ETag") or "").strip('"') or None

    def _create_multipart(self, key: str) -> str:
        with self._translate(f"Starting multipart upload of {key}"):
            response = self.client.create_multipart_upload(Bucket=self.bucket, Key=key)
        return response["UploadId"]

    def _upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        with self._translate(f"Uploading part {part_number} of {key}"):
            response = self.client.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        return response["ETag"]

    def _complete_multipart(self, key: str, upload_id: str, parts: List[Dict[str, Any]]) -> Optional[str]:
        with self._translate(f"Completing multipart upload of {key}"):
            response = self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [{"PartNumber": p["part_number"], "ETag": p["etag"]} for p in parts]
                },
            )
        return (response.get("ETag") or "").strip('"') or None

    # ------------------------------------------------------------------
    # Download, delete, markers, presign
    # ------------------------------------------------------------------

    def download(
        self,
        key: str,
        destination_path: str,
        token: CancellationToken,
        on_progress: Optional[DownloadProgressCallback] = None,
    ) -> None:
        token.raise_if_cancelled()
        with self._translate(f"Downloading {key}"):
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                write_stream(
                    read_chunks(body),
                    destination_path,
                    token,
                    total=response.get("ContentLength"),
                    on_progress=on_progress,
                )
            finally:
                body.close()

    def _delete(self, key: str) -> None:
        with self._translate(f"Deleting {key}"):
            self.client.delete_object(Bucket=self.bucket, Key=key)

    def delete_many(self, keys: List[str]) -> None:
        if not keys:
            return
        self._check_batch(keys)
        with self._translate(f"Deleting {len(keys)} objects"):
            response = self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
            )
        errors = [e for e in response.get("Errors", []) if e.get("Code") != "NoSuchKey"]
        if errors:
            first = errors[0]
            raise StorageError(
                f"Failed to delete {len(errors)} of {len(keys)} objects "
                f"(first: {first.get('Key')}: {first.get('Code')} {first.get('Message', '')})"
            )
        logger.info(f"Deleted batch of {len(keys)} objects")

    def create_marker(self, key: str) -> None:
        with self._translate(f"Creating folder {key}"):
            self.client.put_object(Bucket=self.bucket, Key=key, Body=b"")

    def presign(self, key: str, ttl: int = 900) -> Optional[str]:
        if self.profile.public_domain:
            return self.public_url(key)
        with self._translate(f"Signing {key}"):
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl,
            )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info(f"Closed S3 client for {self.bucket}")
