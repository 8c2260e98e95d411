"""
Download orchestration: destination resolution, throughput and events.

Downloads stream straight to disk. Object stores use their SDK's streaming
GET; image hosts fetch the URL remembered from the last listing. A failure
part-way leaves the partial file where it is and marks the task failed.
"""

import logging
import os
import time
from concurrent.futures import Executor, Future
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from .activity import ActivityLog
from .cancellation import CancellationToken
from .exceptions import Cancelled, StorageError
from .models import DownloadStatus, DownloadTask, utcnow
from .providers.base import ProviderAdapter
from .registry import TransferRegistry
from .task_store import TaskStore
from .upload import EventSink, emit_safely

logger = logging.getLogger(__name__)

DOWNLOAD_CHANNEL = "download-update"


def resolve_destination(
    download_dir: Union[str, Path],
    key: str,
    now: Optional[datetime] = None,
) -> Path:
    """
    Pick a local path for ``key`` that does not exist yet.

    ``dir/name.ext`` is used when free; otherwise a timestamp is inserted
    before the extension (``name_20240101-120000.ext``), followed by a
    counter if that name is also taken.
    """
    download_dir = Path(download_dir).expanduser()
    name = os.path.basename(key.rstrip("/")) or "download"
    candidate = download_dir / name
    if not candidate.exists():
        return candidate

    stem, ext = os.path.splitext(name)
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    candidate = download_dir / f"{stem}_{stamp}{ext}"
    counter = 1
    while candidate.exists():
        candidate = download_dir / f"{stem}_{stamp}-{counter}{ext}"
        counter += 1
    return candidate


class ThroughputSampler:
    """Bytes-per-second over a rolling window of at least ``window`` seconds."""

    def __init__(self, window: float = 0.5, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._start = clock()
        self._start_bytes = 0
        self.speed = 0.0

    def update(self, bytes_done: int) -> bool:
        """
        Record the running byte count.

        Returns:
            True when a new speed sample was computed
        """
        now = self._clock()
        elapsed = now - self._start
        if elapsed < self.window:
            return False
        self.speed = (bytes_done - self._start_bytes) / elapsed
        self._start = now
        self._start_bytes = bytes_done
        return True


class DownloadOrchestrator:
    """Starts and cancels downloads."""

    def __init__(
        self,
        adapter_provider: Callable[[], ProviderAdapter],
        registry: TransferRegistry,
        executor: Executor,
        download_dir: Union[str, Path],
        store: Optional[TaskStore] = None,
        activity: Optional[ActivityLog] = None,
        event_sink: Optional[EventSink] = None,
        throughput_window: float = 0.5,
    ):
        self._adapter_provider = adapter_provider
        self.registry = registry
        self.executor = executor
        self.download_dir = Path(download_dir).expanduser()
        self.store = store or TaskStore()
        self.activity = activity
        self.event_sink = event_sink
        self.throughput_window = throughput_window

    def _emit(self, kind: str, task: DownloadTask) -> None:
        emit_safely(self.event_sink, DOWNLOAD_CHANNEL, {"type": kind, "task": task.to_dict()})

    def start(self, key: str) -> Future:
        """
        Start downloading ``key`` into the download directory.

        Returns:
            Future resolving to the final DownloadTask

        Raises:
            ConfigurationError: If no profile is active
        """
        adapter = self._adapter_provider()
        destination = resolve_destination(self.download_dir, key)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.touch()
        task = DownloadTask(key=key, destination_path=str(destination))
        token = self.registry.register(task.id)
        try:
            self.store.save_download(task)
            self._emit("start", task)
            logger.info(f"Starting download {key} -> {destination}")
            return self.executor.submit(self._run, adapter, task, token)
        except BaseException:
            self.registry.release(task.id, token)
            raise

    def _run(self, adapter: ProviderAdapter, task: DownloadTask, token: CancellationToken) -> DownloadTask:
        sampler = ThroughputSampler(self.throughput_window)
        task.status = DownloadStatus.DOWNLOADING
        self.store.save_download(task, persist=False)

        def on_progress(done: int, total: Optional[int]) -> None:
            task.bytes_downloaded = done
            if total:
                task.progress_percent = min(100.0, 100.0 * done / total)
            if sampler.update(done):
                task.speed_bytes_per_sec = sampler.speed
                self._emit("progress", task)

        try:
            adapter.download(task.key, task.destination_path, token, on_progress)
        except Cancelled as e:
            self._fail(task, f"Download cancelled: {e}")
            return task
        except StorageError as e:
            self._fail(task, str(e) or type(e).__name__)
            raise
        except OSError as e:
            self._fail(task, str(e))
            raise StorageError(f"Download of {task.key} failed: {e}") from e
        finally:
            self.registry.release(task.id, token)

        task.status = DownloadStatus.COMPLETED
        task.progress_percent = 100.0
        task.completed_at = utcnow()
        self.store.save_download(task)
        self._emit("progress", task)
        if self.activity is not None:
            self.activity.record(
                "download", "completed", key=task.key,
                message=f"Saved to {task.destination_path}", bytes_transferred=task.bytes_downloaded,
            )
        logger.info(f"Downloaded {task.key} ({task.bytes_downloaded} bytes) to {task.destination_path}")
        return task

    def _fail(self, task: DownloadTask, message: str) -> None:
        task.status = DownloadStatus.FAILED
        task.error = message
        task.completed_at = utcnow()
        self.store.save_download(task)
        self._emit("error", task)
        if self.activity is not None:
            self.activity.record("download", "failed", key=task.key, message=message,
                                 bytes_transferred=task.bytes_downloaded)
        logger.error(f"Download of {task.key} failed: {message}")

    def cancel(self, task_id: str) -> bool:
        """Cancel a running download; it ends as ``failed``."""
        return self.registry.cancel(task_id, "Cancelled by user")
