"""
Shared base for image-hosting providers (SM.MS, Lsky Pro).

Image hosts speak plain HTTP/JSON through ``requests``. They have no
folders, no signed URLs and no native download: the public URL and the
delete token of an image are only known from list or upload responses, so
every adapter keeps a UrlCache. A cache miss on delete re-queries the
history; a cache miss on download is a NotFound asking the caller to list
again.
"""

import logging
from abc import abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytz
import requests

from ..cancellation import CancellationToken
from ..exceptions import NetworkError, NotFound, StorageError, Unsupported, error_for_status
from ..models import ListPage, ObjectEntry, ProviderStats, UploadResult
from ..url_cache import UrlCache
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

USER_AGENT = "cloudshuttle/1.0"

# (entry, delete token, content hash)
HistoryItem = Tuple[ObjectEntry, Optional[str], Optional[str]]


class MalformedResponse(StorageError):
    """Raised when an image host answers with something other than the expected JSON."""

    pass


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ``YYYY-mm-dd HH:MM:SS`` or ISO timestamps as UTC; None if unparseable."""
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=pytz.UTC)
    text = str(value).strip().replace("Z", "+00:00")
    for parse in (datetime.fromisoformat, lambda v: datetime.strptime(v, "%Y-%m-%d %H:%M:%S")):
        try:
            parsed = parse(text)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else pytz.UTC.localize(parsed)
    return None


def fetch_url(
    url: str,
    destination_path: str,
    token: CancellationToken,
    timeout,
    on_progress: Optional[DownloadProgressCallback] = None,
) -> int:
    """
    Stream a public URL to disk with a plain HTTP GET.

    Returns:
        Number of bytes written

    Raises:
        NotFound, AuthError, RateLimited, NetworkError: Mapped from the response
        Cancelled: If ``token`` is cancelled between chunks
    """
    token.raise_if_cancelled()
    try:
        response = requests.get(url, stream=True, timeout=timeout, headers={"User-Agent": USER_AGENT})
    except requests.RequestException as e:
        raise NetworkError(f"Download of {url} failed: {e}") from e

    with response:
        if response.status_code >= 400:
            raise error_for_status(response.status_code, f"Download of {url} failed with HTTP {response.status_code}")
        length = response.headers.get("Content-Length")
        try:
            return write_stream(
                response.iter_content(STREAM_CHUNK_SIZE),
                destination_path,
                token,
                total=int(length) if length else None,
                on_progress=on_progress,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Download of {url} interrupted: {e}") from e


class ImageHostAdapter(ProviderAdapter):
    """Base class for HTTP/JSON image-hosting backends."""

    capabilities = Capabilities(native_download=False, folders=False)

    def __init__(self, profile, settings=None, session: Optional[requests.Session] = None):
        super().__init__(profile, settings)
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })
        self.url_cache = UrlCache()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send one request, mapping transport errors and HTTP error statuses."""
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.settings.timeout, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e
        if response.status_code >= 400:
            raise error_for_status(
                response.status_code,
                f"{method} {url} failed with HTTP {response.status_code}: {response.text[:200]}",
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(
                f"Non-JSON response (HTTP {response.status_code}): {response.text[:200]}"
            ) from e
        if not isinstance(data, dict):
            raise MalformedResponse(f"Unexpected response shape: {type(data).__name__}")
        return data

    # ------------------------------------------------------------------
    # Provider-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _fetch_page(self, page: int) -> Tuple[List[HistoryItem], Optional[int]]:
        """Fetch one history page; returns the items and the next page number."""

    @abstractmethod
    def _post_file(self, source_path: str) -> HistoryItem:
        """Upload one file; returns the created item."""

    @abstractmethod
    def _delete_remote(self, delete_token: str) -> None:
        """Delete an image by its delete token."""

    @abstractmethod
    def _profile_stats(self) -> Optional[ProviderStats]:
        """Usage from the account endpoint, or None when the response is unusable."""

    # ------------------------------------------------------------------
    # Adapter operations
    # ------------------------------------------------------------------

    def _remember(self, items: Iterable[HistoryItem]) -> List[ObjectEntry]:
        entries = []
        for entry, delete_token, content_hash in items:
            self.url_cache.put(entry.key, entry.public_url, delete_token, content_hash)
            entries.append(entry)
        return entries

    def list(self, prefix="", cursor=None, delimiter=None) -> ListPage:
        page = int(self._unwrap(cursor) or 1)
        items, next_page = self._fetch_page(page)
        entries = self._remember(items)
        if prefix:
            entries = [e for e in entries if e.key.startswith(prefix)]
        logger.debug(f"Fetched history page {page} ({len(entries)} entries, next: {next_page})")
        return ListPage(entries=entries, next_cursor=self._cursor(next_page))

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
        entry, delete_token, content_hash = self._post_file(source_path)
        self.url_cache.put(entry.key, entry.public_url, delete_token, content_hash)
        if on_progress:
            on_progress(100.0, None)
        logger.info(f"Uploaded {source_path} as {entry.key}")
        return UploadResult(key=entry.key, public_url=entry.public_url, etag=content_hash)

    def download(
        self,
        key: str,
        destination_path: str,
        token: CancellationToken,
        on_progress: Optional[DownloadProgressCallback] = None,
    ) -> None:
        cached = self.url_cache.get(key)
        if cached is None or not cached.public_url:
            raise NotFound(f"No URL known for '{key}'; refresh the listing and try again")
        fetch_url(cached.public_url, destination_path, token, self.settings.timeout, on_progress)

    def _find(self, key: str) -> Optional[HistoryItem]:
        """Walk the history until ``key`` turns up, refreshing the cache on the way."""
        page: Optional[int] = 1
        while page is not None:
            items, page = self._fetch_page(page)
            self._remember(items)
            for item in items:
                if item[0].key == key:
                    return item
        return None

    def _delete(self, key: str) -> None:
        cached = self.url_cache.get(key)
        delete_token = cached.delete_token if cached else None
        if not delete_token:
            logger.debug(f"Delete token for {key} not cached, searching history")
            found = self._find(key)
            if found is None or not found[1]:
                raise NotFound(f"'{key}' not found on {self.provider_type.value}")
            delete_token = found[1]
        self._delete_remote(delete_token)
        self.url_cache.pop(key)
        logger.info(f"Deleted {key}")

    def create_marker(self, key: str) -> None:
        raise Unsupported(f"{self.provider_type.value} has no folders")

    def public_url(self, key: str) -> Optional[str]:
        cached = self.url_cache.get(key)
        return cached.public_url if cached else None

    def stats(self) -> ProviderStats:
        stats = self._profile_stats()
        if stats is not None:
            return stats
        logger.warning(f"Usage endpoint of {self.profile.id} returned no usable data, counting history instead")
        return super().stats()

    def close(self) -> None:
        self.session.close()
        self.url_cache.clear()
