"""
Lsky Pro image-hosting provider (API v1).

Lsky reports image sizes and account usage in kilobytes; they are
converted to bytes here.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import AuthError, StorageError
from ..models import ObjectEntry, ProviderStats, ProviderType
from .imagehost import HistoryItem, ImageHostAdapter, parse_timestamp

logger = logging.getLogger(__name__)

KB = 1024


def kb_to_bytes(value: Any) -> int:
    return int(round(float(value or 0) * KB))


class LskyAdapter(ImageHostAdapter):
    """Adapter for a self-hosted Lsky Pro instance."""

    provider_type = ProviderType.LSKY

    def __init__(self, profile, settings=None, session=None):
        super().__init__(profile, settings, session)
        creds = self._require("base_url", "token")
        token = creds["token"]
        if not token.startswith("Bearer "):
            token = f"Bearer {token}"
        self.session.headers["Authorization"] = token
        self.api_url = f"{creds['base_url'].rstrip('/')}/api/v1"

    def _envelope(self, data: Dict[str, Any], action: str) -> Any:
        """Unwrap ``{status, message, data}`` or raise."""
        if data.get("status"):
            return data.get("data")
        message = f"{action} failed: {data.get('message') or 'unknown error'}"
        if "unauthenticated" in message.lower():
            raise AuthError(message)
        raise StorageError(message)

    def _item(self, raw: Dict[str, Any]) -> HistoryItem:
        links = raw.get("links") or {}
        entry = ObjectEntry(
            key=raw.get("pathname") or raw.get("name") or raw.get("key"),
            size=kb_to_bytes(raw.get("size")),
            last_modified=parse_timestamp(raw.get("date")),
            etag=raw.get("md5"),
            public_url=links.get("url"),
        )
        return entry, raw.get("key"), raw.get("md5")

    def test_connection(self) -> None:
        self._envelope(self._json(self._send("GET", f"{self.api_url}/profile")), "Checking token")
        logger.info(f"Lsky Pro token verified for {self.api_url}")

    def _fetch_page(self, page: int) -> Tuple[List[HistoryItem], Optional[int]]:
        params = {"page": page, "order": "newest", "permission": "public"}
        data = self._envelope(
            self._json(self._send("GET", f"{self.api_url}/images", params=params)),
            "Fetching images",
        ) or {}
        items = [self._item(raw) for raw in data.get("data") or [] if isinstance(raw, dict)]
        current = int(data.get("current_page") or page)
        last = int(data.get("last_page") or current)
        return items, (current + 1 if current < last else None)

    def _post_file(self, source_path: str) -> HistoryItem:
        name = os.path.basename(source_path)
        with open(source_path, "rb") as f:
            response = self._send("POST", f"{self.api_url}/upload", files={"file": (name, f)})
        raw = self._envelope(self._json(response), f"Uploading {name}")
        if not isinstance(raw, dict):
            raise StorageError(f"Uploading {name} returned no image data")
        return self._item(raw)

    def _delete_remote(self, delete_token: str) -> None:
        response = self._send("DELETE", f"{self.api_url}/images/{delete_token}")
        self._envelope(self._json(response), f"Deleting {delete_token}")

    def _profile_stats(self) -> Optional[ProviderStats]:
        try:
            response = self._send("GET", f"{self.api_url}/profile")
            profile = self._envelope(self._json(response), "Fetching profile")
            return ProviderStats(
                count=int(profile["image_num"]),
                total_bytes=kb_to_bytes(profile["size"]),
                quota_bytes=kb_to_bytes(profile["capacity"]) if profile.get("capacity") else None,
            )
        except AuthError:
            raise
        except (StorageError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Profile endpoint unavailable: {e}")
            return None
