"""
URL / delete-token cache for image-host providers.

Image hosts only return an object's public URL and delete token at list or
upload time, and later operations (download, delete) need them. Entries are
never authoritative: a miss means "re-query the provider", never "fail".
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Values remembered for one provider key."""
    public_url: Optional[str] = None
    delete_token: Optional[str] = None
    content_hash: Optional[str] = None


class UrlCache:
    """Thread-safe cache keyed by provider key."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def put(
        self,
        key: str,
        public_url: Optional[str] = None,
        delete_token: Optional[str] = None,
        content_hash: Optional[str] = None,
    ) -> CacheEntry:
        """Insert or replace the entry for ``key``."""
        entry = CacheEntry(public_url, delete_token, content_hash)
        with self._lock:
            self._entries[key] = entry
        return entry

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def pop(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.debug("Cleared URL cache")

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
