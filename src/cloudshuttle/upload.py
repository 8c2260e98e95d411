"""
Upload orchestration: registration, progress, pause/resume and persistence.

Provides:
- UploadOrchestrator driving adapter uploads on a shared thread pool
- ProgressEmitter enforcing non-decreasing progress per task
- total_percent mapping per-run progress onto whole-file progress

Lifecycle of one run:
1. Resolve the adapter (ConfigurationError before anything is registered)
2. Register the destination key (TransferConflict if already in flight)
3. Emit the starting percentage synchronously
4. Upload on the pool; exactly one terminal event and one activity entry
5. Release the registry handle in ``finally``
"""

import logging
import os
import threading
from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, Optional

from .activity import ActivityLog
from .cancellation import CancellationToken
from .exceptions import Cancelled, StorageError
from .models import UploadEvent, UploadStatus, UploadTask
from .providers.base import ProviderAdapter
from .registry import TransferRegistry
from .task_store import TaskStore

logger = logging.getLogger(__name__)

UPLOAD_CHANNEL = "upload-progress"

EventSink = Callable[[str, Dict[str, Any]], None]


def total_percent(base: float, new: float) -> float:
    """Whole-file progress given the resumed base and this run's progress."""
    return base + new * (100.0 - base) / 100.0


def emit_safely(sink: Optional[EventSink], channel: str, payload: Dict[str, Any]) -> None:
    """Deliver an event; a failing sink is logged and never breaks a transfer."""
    if sink is None:
        return
    try:
        sink(channel, payload)
    except Exception:
        logger.exception(f"Event sink failed on channel {channel}")


class ProgressEmitter:
    """
    Emits upload events for one task.

    Parallel part completion can report progress out of order; any
    ``uploading`` event below the last emitted percentage is dropped.
    Terminal events are always delivered.
    """

    def __init__(self, key: str, sink: Optional[EventSink]):
        self.key = key
        self._sink = sink
        self._last = -1.0
        self._lock = threading.Lock()

    @property
    def last_percent(self) -> float:
        return max(self._last, 0.0)

    def emit(self, percent: float, status: UploadStatus, **extra: Any) -> bool:
        """
        Emit an event.

        Returns:
            False if the event was dropped as a regression
        """
        with self._lock:
            if status == UploadStatus.UPLOADING and percent < self._last:
                return False
            self._last = max(self._last, percent)
            event = UploadEvent(key=self.key, percent=round(percent, 2), status=status, **extra)
        emit_safely(self._sink, UPLOAD_CHANNEL, event.to_dict())
        return True


class UploadOrchestrator:
    """Starts, pauses, resumes and removes uploads."""

    def __init__(
        self,
        adapter_provider: Callable[[], ProviderAdapter],
        registry: TransferRegistry,
        executor: Executor,
        store: Optional[TaskStore] = None,
        activity: Optional[ActivityLog] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            adapter_provider: Returns the active profile's adapter; raises
                ConfigurationError when none is configured
            registry: Shared transfer registry
            executor: Shared transfer pool
            store: Task store for persistence (in-memory if omitted)
            activity: Activity log receiving one entry per terminal state
            event_sink: Receives ``(channel, payload)`` events
        """
        self._adapter_provider = adapter_provider
        self.registry = registry
        self.executor = executor
        self.store = store or TaskStore()
        self.activity = activity
        self.event_sink = event_sink
        self._removing = set()
        self._removing_lock = threading.Lock()

    def start(
        self,
        source_path: str,
        destination_key: str,
        checkpoint: Optional[Dict[str, Any]] = None,
        resume: bool = False,
    ) -> Future:
        """
        Start (or resume) an upload.

        Args:
            source_path: Local file to upload
            destination_key: Destination object key
            checkpoint: Multipart checkpoint to resume from
            resume: Whether this run continues an earlier task

        Returns:
            Future resolving to the final UploadTask

        Raises:
            ConfigurationError: If no profile is active
            TransferConflict: If the key already has a live upload
        """
        adapter = self._adapter_provider()
        token = self.registry.register(destination_key)

        try:
            base = adapter.checkpoint_percent(checkpoint, destination_key, source_path) if checkpoint else 0.0
            task = self.store.get_upload(destination_key) or UploadTask(
                source_path=source_path,
                destination_key=destination_key,
            )
            task.source_path = source_path
            task.status = UploadStatus.UPLOADING
            task.checkpoint = checkpoint
            task.resume_offset_percent = base
            task.progress_percent = base
            task.error = None
            self.store.save_upload(task)

            emitter = ProgressEmitter(destination_key, self.event_sink)
            extra = {"resumed_from": base} if resume else {}
            emitter.emit(base, UploadStatus.UPLOADING, **extra)
            logger.info(
                f"{'Resuming' if resume else 'Starting'} upload {source_path} -> {destination_key} "
                f"via {adapter.provider_type.value} (from {base:.1f}%)"
            )

            return self.executor.submit(self._run, adapter, task, token, emitter)
        except BaseException:
            self.registry.release(destination_key, token)
            raise

    def _run(
        self,
        adapter: ProviderAdapter,
        task: UploadTask,
        token: CancellationToken,
        emitter: ProgressEmitter,
    ) -> UploadTask:
        key = task.destination_key
        base = task.resume_offset_percent

        def on_progress(percent: float, checkpoint: Optional[Dict[str, Any]]) -> None:
            total = total_percent(base, percent)
            task.progress_percent = max(task.progress_percent, total)
            if checkpoint is not None:
                task.checkpoint = checkpoint
                with self._removing_lock:
                    if key not in self._removing:
                        self.store.save_upload(task)
            emitter.emit(total, UploadStatus.UPLOADING)

        try:
            adapter.upload(task.source_path, key, token, task.checkpoint, on_progress)
        except Cancelled as e:
            if self._is_removing(key):
                self.store.remove_upload(key)
                emitter.emit(emitter.last_percent, UploadStatus.PAUSED)
                self._record("removed", key, f"Upload of {key} cancelled and removed")
                logger.info(f"Upload of {key} cancelled and removed")
                return task
            task.status = UploadStatus.PAUSED
            task.checkpoint = e.checkpoint or task.checkpoint
            task.progress_percent = emitter.last_percent
            task.error = None
            self.store.save_upload(task)
            emitter.emit(task.progress_percent, UploadStatus.PAUSED, checkpoint=task.checkpoint)
            self._record("paused", key, f"Upload of {key} paused at {task.progress_percent:.1f}%")
            logger.info(f"Upload of {key} paused at {task.progress_percent:.1f}%")
            return task
        except StorageError as e:
            self._fail(task, emitter, e, e.checkpoint)
            raise
        except OSError as e:
            self._fail(task, emitter, e, None)
            raise StorageError(f"Upload of {key} failed: {e}") from e
        else:
            task.status = UploadStatus.COMPLETED
            task.progress_percent = 100.0
            task.checkpoint = None
            task.error = None
            # Decided before release; a remove() racing this run is seen here
            with self._removing_lock:
                removed = key in self._removing
                if removed:
                    self.store.remove_upload(key)
                else:
                    self.store.save_upload(task)
            emitter.emit(100.0, UploadStatus.COMPLETED)
            if removed:
                self._record("removed", key, f"Upload of {key} finished and removed")
                logger.info(f"Upload of {key} finished after removal; task dropped")
            else:
                self._record("completed", key, f"Uploaded {task.source_path}", _size(task.source_path))
                logger.info(f"Upload of {key} completed")
            return task
        finally:
            with self._removing_lock:
                self._removing.discard(key)
            self.registry.release(key, token)

    def _is_removing(self, key: str) -> bool:
        with self._removing_lock:
            return key in self._removing

    def _fail(
        self,
        task: UploadTask,
        emitter: ProgressEmitter,
        error: BaseException,
        checkpoint: Optional[Dict[str, Any]],
    ) -> None:
        key = task.destination_key
        task.status = UploadStatus.ERROR
        task.checkpoint = checkpoint or task.checkpoint
        task.progress_percent = emitter.last_percent
        task.error = str(error) or type(error).__name__
        with self._removing_lock:
            if key in self._removing:
                self.store.remove_upload(key)
            else:
                self.store.save_upload(task)
        emitter.emit(task.progress_percent, UploadStatus.ERROR, checkpoint=task.checkpoint, error=task.error)
        self._record("error", key, task.error)
        logger.error(f"Upload of {key} failed: {task.error}")

    def _record(self, status: str, key: str, message: str, size: Optional[int] = None) -> None:
        if self.activity is not None:
            self.activity.record("upload", status, key=key, message=message, bytes_transferred=size)

    def pause(self, destination_key: str) -> bool:
        """Request a cooperative pause; the run reports ``paused`` when it stops."""
        return self.registry.cancel(destination_key, "Paused by user")

    def resume(
        self,
        source_path: str,
        destination_key: str,
        checkpoint: Optional[Dict[str, Any]] = None,
    ) -> Future:
        """Resume from ``checkpoint`` or, if omitted, the stored task's checkpoint."""
        if checkpoint is None:
            stored = self.store.get_upload(destination_key)
            checkpoint = stored.checkpoint if stored else None
        return self.start(source_path, destination_key, checkpoint, resume=True)

    def remove(self, destination_key: str) -> bool:
        """Cancel any live run and delete the task record."""
        with self._removing_lock:
            self._removing.add(destination_key)
            if not self.registry.cancel(destination_key, "Removed by user"):
                self._removing.discard(destination_key)
            removed = self.store.remove_upload(destination_key)
        if removed:
            logger.info(f"Removed upload task {destination_key}")
        return removed


def _size(path: str) -> Optional[int]:
    try:
        return os.path.getsize(path)
    except OSError:
        return None
