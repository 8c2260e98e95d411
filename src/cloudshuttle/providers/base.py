"""
Provider adapter interface.

Every backend (S3-compatible, OSS, COS, SM.MS, Lsky Pro) implements the same
capability set: list, upload, download, delete, delete_many, create_marker,
presign and stats. Capabilities a backend lacks are declared in
``Capabilities`` and surface as ``Unsupported`` (or ``None`` for presign),
never as a vendor-specific failure.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..cancellation import CancellationToken
from ..exceptions import ConfigurationError, NotFound, StorageError, Unsupported
from ..models import Cursor, ListPage, Profile, ProviderStats, ProviderType, UploadResult
from ..settings import TransferSettings

logger = logging.getLogger(__name__)

# on_progress(percent_of_this_call, checkpoint)
UploadProgressCallback = Callable[[float, Optional[Dict[str, Any]]], None]
# on_progress(bytes_done, bytes_total)
DownloadProgressCallback = Callable[[int, Optional[int]], None]

STREAM_CHUNK_SIZE = 256 * 1024


@dataclass(frozen=True)
class Capabilities:
    """What a backend can do natively."""
    chunked_upload: bool = False
    presign: bool = False
    native_download: bool = True
    folders: bool = True
    max_delete_batch: int = 1000


class ProviderAdapter(ABC):
    """Abstract base class for storage backends."""

    provider_type: ProviderType
    capabilities = Capabilities()

    def __init__(self, profile: Profile, settings: Optional[TransferSettings] = None):
        """
        Initialize the adapter.

        Args:
            profile: Profile holding credentials and bucket information
            settings: Transfer settings (timeouts, part size, page size)

        Raises:
            ConfigurationError: If the profile type does not match the adapter
        """
        if profile.type != self.provider_type:
            raise ConfigurationError(
                f"Profile '{profile.id}' is of type {profile.type.value}, "
                f"expected {self.provider_type.value}"
            )
        self.profile = profile
        self.settings = settings or TransferSettings()

    # ------------------------------------------------------------------
    # Required operations
    # ------------------------------------------------------------------

    @abstractmethod
    def test_connection(self) -> None:
        """
        Make one cheap authenticated call.

        Raises:
            AuthError, NotFound, NetworkError: If the backend is unusable
        """

    @abstractmethod
    def list(
        self,
        prefix: str = "",
        cursor: Optional[Cursor] = None,
        delimiter: Optional[str] = None,
    ) -> ListPage:
        """
        Fetch one page of a listing.

        Args:
            prefix: Key prefix to list under
            cursor: Cursor returned by the previous page, None for the first
            delimiter: "/" for one-level folder listings (common prefixes
                become folder entries); None or "" for a flat recursive listing

        Returns:
            ListPage whose ``next_cursor`` is None on the final page
        """

    @abstractmethod
    def upload(
        self,
        source_path: str,
        destination_key: str,
        token: CancellationToken,
        checkpoint: Optional[Dict[str, Any]] = None,
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> UploadResult:
        """
        Upload a local file.

        Args:
            source_path: Local file path
            destination_key: Destination object key
            token: Cancellation token checked at every I/O boundary
            checkpoint: Resume state from a previous paused/failed run
            on_progress: Called with (percent of this call, checkpoint)

        Raises:
            Cancelled: When ``token`` is cancelled; carries the checkpoint
                for chunkable backends
        """

    @abstractmethod
    def _delete(self, key: str) -> None:
        """Delete one key; may raise NotFound."""

    @abstractmethod
    def create_marker(self, key: str) -> None:
        """Create a zero-byte object representing an empty folder."""

    # ------------------------------------------------------------------
    # Operations with default behavior
    # ------------------------------------------------------------------

    def download(
        self,
        key: str,
        destination_path: str,
        token: CancellationToken,
        on_progress: Optional[DownloadProgressCallback] = None,
    ) -> None:
        """Stream an object to ``destination_path``."""
        raise Unsupported(f"{self.provider_type.value} has no native download")

    def delete(self, key: str) -> None:
        """Delete one key. Deleting a key that does not exist is not an error."""
        try:
            self._delete(key)
        except NotFound:
            logger.debug(f"Delete of missing key {key} treated as success")

    def delete_many(self, keys: List[str]) -> None:
        """
        Delete a batch of keys.

        Args:
            keys: At most ``capabilities.max_delete_batch`` keys
        """
        self._check_batch(keys)
        for key in keys:
            self.delete(key)

    def presign(self, key: str, ttl: int = 900) -> Optional[str]:
        """Return a temporary URL, or None when the backend cannot sign."""
        return None

    def stats(self) -> ProviderStats:
        """Count objects and bytes by paging the full flat listing."""
        stats = ProviderStats()
        cursor = None
        while True:
            page = self.list("", cursor, None)
            for entry in page.entries:
                if not entry.is_folder:
                    stats.count += 1
                    stats.total_bytes += entry.size
            if not page.has_more:
                break
            cursor = page.next_cursor
        logger.info(f"Derived stats for {self.profile.id}: {stats.count} objects, {stats.total_bytes} bytes")
        return stats

    def checkpoint_percent(self, checkpoint: Optional[Dict[str, Any]], key: str, source_path: str) -> float:
        """Percentage of ``source_path`` already confirmed by ``checkpoint``; 0 when it cannot be reused."""
        return 0.0

    def default_public_url(self, key: str) -> Optional[str]:
        """Provider-default URL for ``key`` when no custom domain is set."""
        return None

    def public_url(self, key: str) -> Optional[str]:
        """Public URL for ``key``, honouring the profile's custom domain."""
        domain = (self.profile.public_domain or "").strip()
        if domain:
            domain = domain.rstrip("/")
            if not re.match(r"^https?://", domain, re.IGNORECASE):
                domain = f"https://{domain}"
            return f"{domain}/{key}"
        return self.default_public_url(key)

    def close(self) -> None:
        """Release client resources. Default is a no-op."""

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _require(self, *names: str) -> Dict[str, str]:
        """Fetch required credential fields or raise ConfigurationError."""
        values = {name: self.profile.credential(name) for name in names}
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Profile '{self.profile.id}' is missing required fields: {', '.join(missing)}"
            )
        return values

    def _check_batch(self, keys: List[str]) -> None:
        if len(keys) > self.capabilities.max_delete_batch:
            raise ValueError(
                f"Batch of {len(keys)} keys exceeds the limit of "
                f"{self.capabilities.max_delete_batch}"
            )

    def _require_bucket(self) -> str:
        bucket = (self.profile.bucket or "").strip()
        if not bucket:
            raise ConfigurationError(f"Profile '{self.profile.id}' has no bucket configured")
        return bucket

    def _cursor(self, token: Any) -> Optional[Cursor]:
        """Wrap a provider-native continuation value, None when exhausted."""
        if token in (None, ""):
            return None
        return Cursor(provider=self.provider_type, token=token)

    def _unwrap(self, cursor: Optional[Cursor]) -> Any:
        """Extract the provider-native value from a cursor."""
        if cursor is None:
            return None
        if cursor.provider != self.provider_type:
            raise ValueError(
                f"Cursor from {cursor.provider.value} cannot be used with {self.provider_type.value}"
            )
        return cursor.token


def write_stream(
    chunks: Iterable[bytes],
    destination_path: str,
    token: CancellationToken,
    total: Optional[int] = None,
    on_progress: Optional[DownloadProgressCallback] = None,
) -> int:
    """
    Write a stream of chunks to disk, checking ``token`` between chunks.

    A failure part-way leaves the partial file in place.

    Returns:
        Number of bytes written
    """
    Path(destination_path).parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with open(destination_path, "wb") as f:
        for chunk in chunks:
            token.raise_if_cancelled()
            if not chunk:
                continue
            f.write(chunk)
            written += len(chunk)
            if on_progress:
                on_progress(written, total)
    return written


def read_chunks(stream, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterable[bytes]:
    """Iterate over a file-like object's ``read`` until exhausted."""
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        yield chunk


def file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError as e:
        raise StorageError(f"Cannot read source file {path}: {e}") from e

