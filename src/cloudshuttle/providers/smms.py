"""SM.MS image-hosting provider (API v2)."""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import AuthError, RateLimited, StorageError
from ..models import ObjectEntry, ProviderStats, ProviderType
from .base import ProviderAdapter
from .imagehost import HistoryItem, ImageHostAdapter, parse_timestamp

logger = logging.getLogger(__name__)

SMMS_API = "https://sm.ms/api/v2"

_DELETED_MARKERS = ("File is deleted", "File Delete")


class SmmsAdapter(ImageHostAdapter):
    """Adapter for the SM.MS image host."""

    provider_type = ProviderType.SMMS

    def __init__(self, profile, settings=None, session=None):
        super().__init__(profile, settings, session)
        token = self._require("token")["token"]
        if not token.startswith("Basic "):
            token = f"Basic {token}"
        self.session.headers["Authorization"] = token
        self.api_url = (self.profile.credential("api_url") or SMMS_API).rstrip("/")

    def _envelope(self, data: Dict[str, Any], action: str) -> Any:
        """Unwrap ``{success, code, message, data}`` or raise."""
        if data.get("success") or data.get("code") == "success":
            return data.get("data")
        code = data.get("code") or ""
        message = f"{action} failed: {data.get('message') or code or 'unknown error'}"
        if code in ("unauthorized", "invalid_token"):
            raise AuthError(message)
        if code == "flood":
            raise RateLimited(message)
        raise StorageError(message)

    def _item(self, raw: Dict[str, Any]) -> HistoryItem:
        key = raw.get("filename") or raw.get("storename") or raw.get("path") or raw.get("hash")
        entry = ObjectEntry(
            key=key,
            size=int(raw.get("size") or 0),
            last_modified=parse_timestamp(raw.get("created_at")),
            etag=raw.get("hash"),
            public_url=raw.get("url"),
        )
        return entry, raw.get("hash"), raw.get("hash")

    def test_connection(self) -> None:
        self._envelope(self._json(self._send("GET", f"{self.api_url}/upload_history")), "Checking token")
        logger.info("SM.MS token verified")

    def _fetch_page(self, page: int) -> Tuple[List[HistoryItem], Optional[int]]:
        data = self._json(self._send("GET", f"{self.api_url}/upload_history", params={"page": page}))
        raw_items = self._envelope(data, "Fetching upload history") or []
        items = [self._item(raw) for raw in raw_items if isinstance(raw, dict)]
        current = int(data.get("CurrentPage") or page)
        total = int(data.get("TotalPages") or current)
        return items, (current + 1 if current < total else None)

    def _post_file(self, source_path: str) -> HistoryItem:
        name = os.path.basename(source_path)
        with open(source_path, "rb") as f:
            response = self._send(
                "POST",
                f"{self.api_url}/upload",
                files={"smfile": (name, f, "application/octet-stream")},
            )
        raw = self._envelope(self._json(response), f"Uploading {name}")
        if not isinstance(raw, dict):
            raise StorageError(f"Uploading {name} returned no image data")
        return self._item(raw)

    def _delete_remote(self, delete_token: str) -> None:
        response = self._send("GET", f"{self.api_url}/delete/{delete_token}")
        if any(marker in response.text for marker in _DELETED_MARKERS):
            return
        self._envelope(self._json(response), f"Deleting {delete_token}")

    def _profile_stats(self) -> Optional[ProviderStats]:
        try:
            response = self._send("POST", f"{self.api_url}/profile")
            profile = self._envelope(self._json(response), "Fetching profile")
            used = int(profile["disk_usage_raw"])
            limit = int(profile["disk_limit_raw"])
        except AuthError:
            raise
        except (StorageError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Profile endpoint unavailable: {e}")
            return None
        count = ProviderAdapter.stats(self).count
        return ProviderStats(count=count, total_bytes=used, quota_bytes=limit)
