"""
Task persistence for uploads and downloads.

This module keeps UploadTask and DownloadTask records in a JSON state file
so paused uploads (with their checkpoints) and download history survive a
restart. Uploads are keyed by destination key, downloads by task id.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import DownloadStatus, DownloadTask, UploadStatus, UploadTask, utcnow

logger = logging.getLogger(__name__)

INTERRUPTED_UPLOAD = "Interrupted when the application stopped; resume to continue"
INTERRUPTED_DOWNLOAD = "Interrupted when the application stopped"


class TaskStore:
    """
    Thread-safe store of transfer tasks with optional JSON persistence.

    On load, uploads persisted as ``uploading`` become ``paused`` and
    downloads that never finished become ``failed``; nothing resumes on
    its own after a restart.
    """

    def __init__(self, state_file: Optional[Union[str, Path]] = None):
        """
        Initialize the task store.

        Args:
            state_file: Path of the JSON file; None keeps tasks in memory only
        """
        self.state_file = Path(state_file) if state_file else None
        self._uploads: Dict[str, UploadTask] = {}
        self._downloads: Dict[str, DownloadTask] = {}
        self._lock = threading.RLock()
        self._load_state()

    def _load_state(self) -> None:
        """Load tasks from file if it exists."""
        if self.state_file is None or not self.state_file.exists():
            logger.debug(f"No existing task state file at {self.state_file}")
            return
        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)
            uploads = [UploadTask.from_dict(d) for d in data.get("uploads", {}).values()]
            downloads = [DownloadTask.from_dict(d) for d in data.get("downloads", {}).values()]
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load task state: {e}. Starting fresh.")
            return

        reclassified = 0
        for task in uploads:
            if task.status in (UploadStatus.UPLOADING, UploadStatus.PENDING):
                task.status = UploadStatus.PAUSED
                task.error = INTERRUPTED_UPLOAD
                reclassified += 1
            self._uploads[task.destination_key] = task
        for task in downloads:
            if task.status in (DownloadStatus.PREPARING, DownloadStatus.DOWNLOADING):
                task.status = DownloadStatus.FAILED
                task.error = INTERRUPTED_DOWNLOAD
                reclassified += 1
            self._downloads[task.id] = task

        logger.info(
            f"Loaded {len(self._uploads)} uploads and {len(self._downloads)} downloads "
            f"from {self.state_file} ({reclassified} interrupted)"
        )
        if reclassified:
            self._save_state()

    def _save_state(self) -> None:
        """Persist tasks to file."""
        if self.state_file is None:
            return
        with self._lock:
            data = {
                "uploads": {k: t.to_dict() for k, t in self._uploads.items()},
                "downloads": {k: t.to_dict() for k, t in self._downloads.items()},
            }
            try:
                self.state_file.parent.mkdir(parents=True, exist_ok=True)
                tmp = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
                with open(tmp, "w") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp, self.state_file)
                logger.debug(f"Saved task state to {self.state_file}")
            except OSError as e:
                logger.error(f"Failed to save task state: {e}")

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def save_upload(self, task: UploadTask, persist: bool = True) -> None:
        """Insert or replace the upload task for its destination key."""
        with self._lock:
            task.updated_at = utcnow()
            self._uploads[task.destination_key] = task
        if persist:
            self._save_state()

    def get_upload(self, destination_key: str) -> Optional[UploadTask]:
        with self._lock:
            return self._uploads.get(destination_key)

    def remove_upload(self, destination_key: str) -> bool:
        with self._lock:
            removed = self._uploads.pop(destination_key, None)
        if removed is not None:
            self._save_state()
        return removed is not None

    def uploads(self) -> List[UploadTask]:
        with self._lock:
            return sorted(self._uploads.values(), key=lambda t: t.updated_at)

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def save_download(self, task: DownloadTask, persist: bool = True) -> None:
        with self._lock:
            self._downloads[task.id] = task
        if persist:
            self._save_state()

    def get_download(self, task_id: str) -> Optional[DownloadTask]:
        with self._lock:
            return self._downloads.get(task_id)

    def downloads(self) -> List[DownloadTask]:
        with self._lock:
            return sorted(self._downloads.values(), key=lambda t: t.created_at)

    def clear_finished_downloads(self) -> int:
        """Drop completed and failed downloads from history."""
        with self._lock:
            finished = [k for k, t in self._downloads.items()
                        if t.status in (DownloadStatus.COMPLETED, DownloadStatus.FAILED)]
            for key in finished:
                del self._downloads[key]
        if finished:
            self._save_state()
        logger.info(f"Cleared {len(finished)} finished downloads")
        return len(finished)

    def flush(self) -> None:
        """Write the current state to disk."""
        self._save_state()
