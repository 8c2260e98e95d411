"""
StorageService: the request/response and event boundary of the core.

Every caller-facing operation goes through this class. Long-running work
(uploads, downloads, searches) returns a ``concurrent.futures.Future`` and
reports progress as ``(channel, payload)`` events:

- ``upload-progress``: {key, percent, status, checkpoint?, error?, resumed_from?}
- ``download-update``: {type: start|progress|error, task}
- ``search-update``:   {type: results-chunk|end|error, ...}

Example:
    >>> service = StorageService.from_config_file("cloudshuttle.yaml", event_sink=print)
    >>> service.upload_file("photo.jpg", "albums/photo.jpg").result()
    >>> service.shutdown()
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .activity import ActivityLog
from .bulk import BulkOperations
from .config import AppConfig, ConfigManager, ProfileManager
from .download import DownloadOrchestrator
from .models import BucketStats, Cursor, DownloadTask, ListPage, Profile, UploadTask
from .pagination import list_folder
from .registry import TransferRegistry
from .task_store import TaskStore
from .upload import EventSink, UploadOrchestrator, emit_safely

logger = logging.getLogger(__name__)

SEARCH_CHANNEL = "search-update"


class StorageService:
    """Facade over profiles, adapters, orchestrators and the bulk engine."""

    def __init__(
        self,
        config: AppConfig,
        event_sink: Optional[EventSink] = None,
        profiles: Optional[ProfileManager] = None,
        store: Optional[TaskStore] = None,
        activity: Optional[ActivityLog] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Profiles, settings and state file locations
            event_sink: Receives ``(channel, payload)`` progress events
            profiles: Pre-built profile manager (tests inject fake adapters here)
            store: Task store; defaults to the JSON file from ``config``
            activity: Activity log; defaults to the SQLite file from ``config``
        """
        self.config = config
        self.settings = config.settings
        self.event_sink = event_sink
        self.profiles = profiles or ProfileManager(config.profiles, config.active_profile, config.settings)
        self.store = store if store is not None else TaskStore(config.task_store_path)
        self.activity = activity if activity is not None else ActivityLog(config.activity_db_path)
        self.registry = TransferRegistry()
        self.executor = ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_transfers,
            thread_name_prefix="transfer",
        )

        adapter = self.profiles.adapter
        self.uploads = UploadOrchestrator(
            adapter, self.registry, self.executor, self.store, self.activity, event_sink,
        )
        self.downloads = DownloadOrchestrator(
            adapter, self.registry, self.executor, self.settings.download_dir,
            self.store, self.activity, event_sink, self.settings.throughput_window,
        )
        self.bulk = BulkOperations(adapter, self.settings.delete_batch_size, self.activity)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_config_file(cls, config_path: Path, event_sink: Optional[EventSink] = None) -> "StorageService":
        """Create a service from a YAML configuration file."""
        return cls(ConfigManager.load(config_path), event_sink)

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env", event_sink: Optional[EventSink] = None) -> "StorageService":
        """Create a service from CLOUDSHUTTLE_* environment variables."""
        return cls(ConfigManager.from_env(env_file), event_sink)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    @property
    def active_profile(self) -> Profile:
        return self.profiles.active_profile

    def switch_profile(self, profile_id: str) -> Profile:
        """
        Make another profile active.

        Raises:
            ConfigurationError: If the profile is unknown or transfers are running
        """
        return self.profiles.switch(profile_id, transfers_in_flight=len(self.registry))

    def test_connection(self) -> None:
        """Make one authenticated call against the active profile."""
        self.profiles.adapter().test_connection()

    # ------------------------------------------------------------------
    # Listing and single-object operations
    # ------------------------------------------------------------------

    def list_objects(self, prefix: str = "", cursor: Optional[Cursor] = None, delimiter: Optional[str] = "/") -> ListPage:
        """One page of a folder view (``delimiter="/"``) or flat listing (None)."""
        adapter = self.profiles.adapter()
        if delimiter:
            return list_folder(adapter, prefix, cursor, delimiter)
        return adapter.list(prefix, cursor, None)

    def delete_object(self, key: str) -> None:
        """Delete one object; deleting a missing key succeeds."""
        self.profiles.adapter().delete(key)
        self.activity.record("delete", "completed", key=key)
        logger.info(f"Deleted {key}")

    def create_folder(self, key: str) -> str:
        """Create an empty folder marker; returns the marker key."""
        if not key.endswith("/"):
            key = f"{key}/"
        self.profiles.adapter().create_marker(key)
        self.activity.record("create_folder", "completed", key=key)
        logger.info(f"Created folder {key}")
        return key

    def get_presigned_url(self, key: str, ttl_seconds: int = 900) -> Optional[str]:
        """Temporary URL for ``key``, or None when the backend cannot sign."""
        return self.profiles.adapter().presign(key, ttl_seconds)

    def get_bucket_stats(self) -> Dict[str, Any]:
        stats: BucketStats = self.bulk.stats()
        return stats.to_dict()

    def delete_folder(self, prefix: str) -> int:
        return self.bulk.delete_folder(prefix)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def upload_file(self, source_path: str, destination_key: str, checkpoint: Optional[Dict[str, Any]] = None) -> Future:
        return self.uploads.start(source_path, destination_key, checkpoint)

    def pause_upload(self, destination_key: str) -> bool:
        return self.uploads.pause(destination_key)

    def resume_upload(self, source_path: str, destination_key: str, checkpoint: Optional[Dict[str, Any]] = None) -> Future:
        return self.uploads.resume(source_path, destination_key, checkpoint)

    def remove_upload(self, destination_key: str) -> bool:
        return self.uploads.remove(destination_key)

    def upload_tasks(self) -> List[UploadTask]:
        return self.store.uploads()

    def download_file(self, key: str) -> Future:
        return self.downloads.start(key)

    def cancel_download(self, task_id: str) -> bool:
        return self.downloads.cancel(task_id)

    def download_tasks(self) -> List[DownloadTask]:
        return self.store.downloads()

    def clear_finished_downloads(self) -> int:
        """Forget completed and failed download tasks."""
        return self.store.clear_finished_downloads()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def iter_search(self, term: str) -> Iterator[Dict[str, Any]]:
        """Yield search events synchronously."""
        return self.bulk.search(term)

    def start_search(self, term: str) -> Future:
        """Run a search in the background, streaming ``search-update`` events."""
        events = self.bulk.search(term)

        def run() -> int:
            count = 0
            for event in events:
                emit_safely(self.event_sink, SEARCH_CHANNEL, event)
                count += len(event.get("results", ()))
            return count

        return self.executor.submit(run)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        """Cancel live transfers, wait for them to settle and release resources."""
        active = self.registry.active_keys()
        for key in active:
            self.registry.cancel(key, "Shutting down")
        if active:
            logger.info(f"Cancelled {len(active)} transfers on shutdown")
        self.executor.shutdown(wait=wait)
        self.store.flush()
        self.profiles.close()
        logger.info("Storage service stopped")

    def __enter__(self) -> "StorageService":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
