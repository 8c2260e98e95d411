"""
Bulk operations over whole prefixes or buckets.

Provides:
- Recursive folder delete in batches of at most 1000 keys
- Prefix-independent substring search streamed page by page
- Bucket statistics for the active profile
"""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from .activity import ActivityLog
from .exceptions import ConfigurationError, PartialBatchFailure, StorageError, Unsupported
from .models import BucketStats, Profile
from .pagination import iter_entries, search
from .providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


def batches(keys: List[str], size: int) -> Iterator[List[str]]:
    """Split ``keys`` into consecutive lists of at most ``size``."""
    for start in range(0, len(keys), size):
        yield keys[start:start + size]


class BulkOperations:
    """Folder delete, search and stats against the active adapter."""

    def __init__(
        self,
        adapter_provider: Callable[[], ProviderAdapter],
        batch_size: int = 1000,
        activity: Optional[ActivityLog] = None,
    ):
        self._adapter_provider = adapter_provider
        self.batch_size = batch_size
        self.activity = activity

    def delete_folder(self, prefix: str) -> int:
        """
        Delete every object under ``prefix``, the folder marker included.

        Keys are collected from the full flat listing first, then deleted
        in batches. Batches already deleted are not rolled back.

        Returns:
            Number of keys deleted

        Raises:
            ConfigurationError: If ``prefix`` names the bucket root
            Unsupported: If the backend has no folders
            PartialBatchFailure: If a batch fails; later batches are not run
        """
        adapter = self._adapter_provider()
        if not adapter.capabilities.folders:
            raise Unsupported(f"{adapter.provider_type.value} has no folders")
        if not prefix.strip("/"):
            raise ConfigurationError("Refusing to delete the bucket root; name a folder prefix")
        if not prefix.endswith("/"):
            prefix = f"{prefix}/"

        keys = [entry.key for entry in iter_entries(adapter, prefix, None)]
        size = min(self.batch_size, adapter.capabilities.max_delete_batch)
        logger.info(f"Deleting {len(keys)} objects under '{prefix}' in batches of {size}")

        completed = 0
        for batch in batches(keys, size):
            try:
                adapter.delete_many(batch)
            except StorageError as e:
                message = (
                    f"Folder delete of '{prefix}' stopped after {completed} batches "
                    f"({len(keys)} keys enumerated): {e}"
                )
                self._record("delete_folder", "failed", prefix, message)
                logger.error(message)
                raise PartialBatchFailure(message, len(keys), completed, e) from e
            completed += 1
            logger.debug(f"Deleted batch {completed} ({len(batch)} keys)")

        self._record("delete_folder", "completed", prefix, f"Deleted {len(keys)} objects")
        return len(keys)

    def search(self, term: str) -> Iterator[Dict[str, Any]]:
        """Stream search events (see pagination.search)."""
        adapter = self._adapter_provider()
        logger.info(f"Searching {adapter.profile.id} for '{term}'")
        return search(adapter, term)

    def stats(self) -> BucketStats:
        """
        Stats for the active profile.

        The profile's configured quota wins over one reported by the backend.
        """
        adapter = self._adapter_provider()
        profile: Profile = adapter.profile
        provider_stats = adapter.stats()
        return BucketStats(
            total_count=provider_stats.count,
            total_size=provider_stats.total_bytes,
            bucket_name=profile.bucket or profile.name or profile.id,
            storage_quota_bytes=profile.storage_quota_bytes or provider_stats.quota_bytes,
        )

    def _record(self, operation: str, status: str, key: str, message: str) -> None:
        if self.activity is not None:
            self.activity.record(operation, status, key=key, message=message)
