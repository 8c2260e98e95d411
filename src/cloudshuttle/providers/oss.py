"""
Alibaba Cloud OSS storage provider.

Features:
- Multipart upload with resumable checkpoints
- Marker-based pagination
- Batched deletes (1000 keys per request)
- Signed GET URLs
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

import pytz

from ..cancellation import CancellationToken
from ..exceptions import ConfigurationError, NetworkError, RateLimited, error_for_status
from ..models import ListPage, ObjectEntry, ProviderType
from .base import Capabilities, DownloadProgressCallback, read_chunks, write_stream
from .multipart import ChunkedAdapter

logger = logging.getLogger(__name__)

try:
    import oss2
    from oss2.exceptions import OssError, RequestError
    from oss2.models import PartInfo
    HAS_OSS2 = True
except ImportError:
    HAS_OSS2 = False
    logger.warning("oss2 not installed. OSS provider will not be available.")


def normalize_region(region: str) -> str:
    """Return the ``oss-``-prefixed region id (``cn-hangzhou`` -> ``oss-cn-hangzhou``)."""
    region = region.strip()
    return region if region.startswith("oss-") else f"oss-{region}"


class OssAdapter(ChunkedAdapter):
    """Adapter for Alibaba Cloud Object Storage Service."""

    provider_type = ProviderType.OSS
    capabilities = Capabilities(chunked_upload=True, presign=True)

    def __init__(self, profile, settings=None):
        """
        Initialize the OSS adapter.

        Raises:
            ImportError: If oss2 is not installed
            ConfigurationError: If credentials, region or bucket are missing
        """
        if not HAS_OSS2:
            raise ImportError("oss2 is required for OSS support. Install with: pip install oss2")
        super().__init__(profile, settings)

        creds = self._require("access_key_id", "access_key_secret")
        self.bucket_name = self._require_bucket()
        if not (self.profile.region or "").strip():
            raise ConfigurationError(f"Profile '{self.profile.id}' has no region configured")
        self.region = normalize_region(self.profile.region)
        self.endpoint = self.profile.credential("endpoint") or f"https://{self.region}.aliyuncs.com"
        self._auth = oss2.Auth(creds["access_key_id"], creds["access_key_secret"])
        self._bucket = None

    @property
    def bucket(self):
        """Lazily created oss2.Bucket."""
        if self._bucket is None:
            self._bucket = oss2.Bucket(
                self._auth,
                self.endpoint,
                self.bucket_name,
                connect_timeout=self.settings.read_timeout,
            )
            logger.info(f"Created OSS client for {self.bucket_name} at {self.endpoint}")
        return self._bucket

    @contextmanager
    def _translate(self, action: str) -> Iterator[None]:
        try:
            yield
        except RequestError as e:
            raise NetworkError(f"{action} failed: {e}") from e
        except OssError as e:
            message = f"{action} failed: {e.code or e.status} {e.message or ''}".rstrip()
            if e.code in ("Throttling", "TooManyRequests"):
                raise RateLimited(message) from e
            raise error_for_status(e.status, message) from e

    def test_connection(self) -> None:
        with self._translate(f"Listing bucket {self.bucket_name}"):
            self.bucket.list_objects(max_keys=1)
        logger.info(f"Connection to {self.bucket_name} verified")

    def default_public_url(self, key: str) -> Optional[str]:
        return f"https://{self.bucket_name}.{self.region}.aliyuncs.com/{key}"

    def list(self, prefix="", cursor=None, delimiter=None) -> ListPage:
        marker = self._unwrap(cursor) or ""
        with self._translate(f"Listing {prefix or '/'}"):
            result = self.bucket.list_objects(
                prefix=prefix or "",
                delimiter=delimiter or "",
                marker=marker,
                max_keys=self.settings.list_page_size,
            )

        entries = [ObjectEntry.folder(p) for p in result.prefix_list]
        for obj in result.object_list:
            entries.append(ObjectEntry(
                key=obj.key,
                size=obj.size,
                last_modified=datetime.fromtimestamp(obj.last_modified, tz=pytz.UTC) if obj.last_modified else None,
                etag=(obj.etag or "").strip('"') or None,
                public_url=self.public_url(obj.key),
            ))

        next_marker = result.next_marker if result.is_truncated else None
        logger.debug(f"Listed {len(entries)} entries under '{prefix}' (more: {bool(next_marker)})")
        return ListPage(entries=entries, next_cursor=self._cursor(next_marker))

    def _put_file(self, key: str, source_path: str) -> Optional[str]:
        with self._translate(f"Uploading {key}"):
            result = self.bucket.put_object_from_file(key, source_path)
        return result.etag

    def _create_multipart(self, key: str) -> str:
        with self._translate(f"Starting multipart upload of {key}"):
            return self.bucket.init_multipart_upload(key).upload_id

    def _upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        with self._translate(f"Uploading part {part_number} of {key}"):
            return self.bucket.upload_part(key, upload_id, part_number, data).etag

    def _complete_multipart(self, key: str, upload_id: str, parts: List[Dict[str, Any]]) -> Optional[str]:
        part_infos = [PartInfo(p["part_number"], p["etag"]) for p in parts]
        with self._translate(f"Completing multipart upload of {key}"):
            return self.bucket.complete_multipart_upload(key, upload_id, part_infos).etag

    def download(
        self,
        key: str,
        destination_path: str,
        token: CancellationToken,
        on_progress: Optional[DownloadProgressCallback] = None,
    ) -> None:
        token.raise_if_cancelled()
        with self._translate(f"Downloading {key}"):
            result = self.bucket.get_object(key)
            write_stream(
                read_chunks(result),
                destination_path,
                token,
                total=result.content_length,
                on_progress=on_progress,
            )

    def _delete(self, key: str) -> None:
        with self._translate(f"Deleting {key}"):
            self.bucket.delete_object(key)

    def delete_many(self, keys: List[str]) -> None:
        if not keys:
            return
        self._check_batch(keys)
        with self._translate(f"Deleting {len(keys)} objects"):
            self.bucket.batch_delete_objects(keys)
        logger.info(f"Deleted batch of {len(keys)} objects")

    def create_marker(self, key: str) -> None:
        with self._translate(f"Creating folder {key}"):
            self.bucket.put_object(key, b"")

    def presign(self, key: str, ttl: int = 900) -> Optional[str]:
        if self.profile.public_domain:
            return self.public_url(key)
        with self._translate(f"Signing {key}"):
            return self.bucket.sign_url("GET", key, ttl)
