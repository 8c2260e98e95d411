"""
Tencent Cloud COS storage provider.

Uploads are single requests (progress jumps 0 -> 100). The COS client gets
its own requests.Session with ``trust_env`` disabled so system proxy
variables never apply to COS traffic, without touching the process
environment.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

import requests

from ..cancellation import CancellationToken
from ..exceptions import ConfigurationError, NetworkError, RateLimited, StorageError, error_for_status
from ..models import ListPage, ObjectEntry, ProviderType, UploadResult
from .base import (
    STREAM_CHUNK_SIZE,
    Capabilities,
    DownloadProgressCallback,
    ProviderAdapter,
    UploadProgressCallback,
    file_size,
    write_stream,
)

logger = logging.getLogger(__name__)

try:
    from qcloud_cos import CosConfig, CosS3Client
    from qcloud_cos.cos_exception import CosClientError, CosServiceError
    HAS_COS = True
except ImportError:
    HAS_COS = False
    logger.warning("cos-python-sdk-v5 not installed. COS provider will not be available.")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def no_proxy_session() -> requests.Session:
    """HTTP session that ignores proxy settings from the environment."""
    session = requests.Session()
    session.trust_env = False
    return session


class CosAdapter(ProviderAdapter):
    """Adapter for Tencent Cloud Object Storage."""

    provider_type = ProviderType.COS
    capabilities = Capabilities(presign=True)

    def __init__(self, profile, settings=None):
        """
        Initialize the COS adapter.

        Raises:
            ImportError: If cos-python-sdk-v5 is not installed
            ConfigurationError: If credentials, region or bucket are missing
        """
        if not HAS_COS:
            raise ImportError(
                "cos-python-sdk-v5 is required for COS support. Install with: pip install cos-python-sdk-v5"
            )
        super().__init__(profile, settings)
        self._creds = self._require("secret_id", "secret_key")
        self.bucket = self._require_bucket()
        self.region = (self.profile.region or "").strip()
        if not self.region:
            raise ConfigurationError(f"Profile '{self.profile.id}' has no region configured")
        self._session = None
        self._client = None

    @property
    def client(self):
        """Lazily created COS client bound to a proxy-free session."""
        if self._client is None:
            config = CosConfig(
                Region=self.region,
                SecretId=self._creds["secret_id"],
                SecretKey=self._creds["secret_key"],
                Scheme="https",
                Timeout=int(self.settings.read_timeout),
            )
            self._session = no_proxy_session()
            self._client = CosS3Client(config, retry=0, session=self._session)
            logger.info(f"Created COS client for {self.bucket} in {self.region}")
        return self._client

    @contextmanager
    def _translate(self, action: str) -> Iterator[None]:
        try:
            yield
        except CosServiceError as e:
            code = e.get_error_code()
            message = f"{action} failed: {code} {e.get_error_msg() or ''}".rstrip()
            if code in ("SlowDown", "TooManyRequests"):
                raise RateLimited(message) from e
            raise error_for_status(e.get_status_code() or 0, message) from e
        except CosClientError as e:
            raise NetworkError(f"{action} failed: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"{action} failed: {e}") from e

    def test_connection(self) -> None:
        with self._translate(f"Checking bucket {self.bucket}"):
            self.client.head_bucket(Bucket=self.bucket)
        logger.info(f"Connection to {self.bucket} verified")

    def default_public_url(self, key: str) -> Optional[str]:
        return f"https://{self.bucket}.cos.{self.region}.myqcloud.com/{key}"

    def list(self, prefix="", cursor=None, delimiter=None) -> ListPage:
        marker = self._unwrap(cursor) or ""
        with self._translate(f"Listing {prefix or '/'}"):
            response = self.client.list_objects(
                Bucket=self.bucket,
                Prefix=prefix or "",
                Delimiter=delimiter or "",
                Marker=marker,
                MaxKeys=self.settings.list_page_size,
            )

        entries = [ObjectEntry.folder(p["Prefix"]) for p in response.get("CommonPrefixes", [])]
        for obj in response.get("Contents", []):
            entries.append(ObjectEntry(
                key=obj["Key"],
                size=int(obj.get("Size", 0)),
                last_modified=_parse_time(obj.get("LastModified")),
                etag=(obj.get("ETag") or "").strip('"') or None,
                public_url=self.public_url(obj["Key"]),
            ))

        truncated = str(response.get("IsTruncated", "false")).lower() == "true"
        next_marker = response.get("NextMarker") if truncated else None
        if truncated and not next_marker and response.get("Contents"):
            next_marker = response["Contents"][-1]["Key"]
        logger.debug(f"Listed {len(entries)} entries under '{prefix}' (more: {bool(next_marker)})")
        return ListPage(entries=entries, next_cursor=self._cursor(next_marker))

    def upload(
        self,
        source_path: str,
        destination_key: str,
        token: CancellationToken,
        checkpoint=None,
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> UploadResult:
        file_size(source_path)
        token.raise_if_cancelled()
        if on_progress:
            on_progress(0.0, None)
        with self._translate(f"Uploading {destination_key}"), open(source_path, "rb") as f:
            response = self.client.put_object(Bucket=self.bucket, Body=f, Key=destination_key)
        if on_progress:
            on_progress(100.0, None)
        etag = (response.get("ETag") or "").strip('"') or None
        return UploadResult(key=destination_key, public_url=self.public_url(destination_key), etag=etag)

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
            length = response.get("Content-Length")
            write_stream(
                response["Body"].get_stream(STREAM_CHUNK_SIZE),
                destination_path,
                token,
                total=int(length) if length else None,
                on_progress=on_progress,
            )

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
                Delete={"Object": [{"Key": k} for k in keys], "Quiet": "true"},
            )
        errors = [e for e in (response or {}).get("Error", []) if e.get("Code") != "NoSuchKey"]
        if errors:
            first = errors[0]
            raise StorageError(
                f"Failed to delete {len(errors)} of {len(keys)} objects "
                f"(first: {first.get('Key')}: {first.get('Code')})"
            )
        logger.info(f"Deleted batch of {len(keys)} objects")

    def create_marker(self, key: str) -> None:
        with self._translate(f"Creating folder {key}"):
            self.client.put_object(Bucket=self.bucket, Body=b"", Key=key)

    def presign(self, key: str, ttl: int = 900) -> Optional[str]:
        if self.profile.public_domain:
            return self.public_url(key)
        with self._translate(f"Signing {key}"):
            return self.client.get_presigned_download_url(Bucket=self.bucket, Key=key, Expired=ttl)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
        self._session = None
        self._client = None
