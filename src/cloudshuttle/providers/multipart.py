"""
Resumable multipart upload driver shared by the chunkable backends.

Features:
- Fixed part size (5 MiB by default) and a private worker pool per upload
- Checkpoints listing every confirmed part, JSON-serializable
- Resume skips parts already confirmed in the checkpoint
- Cooperative cancellation: queued parts are skipped, in-flight parts finish,
  and the checkpoint is returned on the Cancelled exception
- Failed uploads are not aborted server-side so a manual resume can continue
"""

import copy
import logging
import math
import threading
from abc import abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..cancellation import CancellationToken
from ..exceptions import Cancelled, StorageError
from ..models import UploadResult
from .base import ProviderAdapter, UploadProgressCallback, file_size

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


@dataclass(frozen=True)
class PartRange:
    """Byte range of one part (part numbers start at 1)."""
    number: int
    offset: int
    length: int


def part_ranges(size: int, part_size: int) -> List[PartRange]:
    """Split ``size`` bytes into consecutive parts of ``part_size``."""
    count = max(1, math.ceil(size / part_size))
    return [
        PartRange(n + 1, n * part_size, min(part_size, size - n * part_size))
        for n in range(count)
    ]


def new_checkpoint(key: str, upload_id: str, size: int, part_size: int) -> Dict[str, Any]:
    return {
        "version": CHECKPOINT_VERSION,
        "key": key,
        "upload_id": upload_id,
        "file_size": size,
        "part_size": part_size,
        "parts": [],
    }


def checkpoint_matches(checkpoint: Optional[Dict[str, Any]], key: str, size: int, part_size: int) -> bool:
    """Whether ``checkpoint`` describes an upload of this exact file layout."""
    if not checkpoint:
        return False
    return (
        checkpoint.get("version") == CHECKPOINT_VERSION
        and checkpoint.get("key") == key
        and checkpoint.get("file_size") == size
        and checkpoint.get("part_size") == part_size
        and bool(checkpoint.get("upload_id"))
    )


def confirmed_bytes(checkpoint: Dict[str, Any]) -> int:
    """Bytes covered by the confirmed parts of ``checkpoint``."""
    ranges = {r.number: r for r in part_ranges(checkpoint["file_size"], checkpoint["part_size"])}
    return sum(
        ranges[p["part_number"]].length
        for p in checkpoint.get("parts", [])
        if p["part_number"] in ranges
    )


class MultipartUpload:
    """
    Drives one multipart upload to completion, pause or failure.

    The adapter supplies the vendor calls (create, upload part, complete);
    this class owns part scheduling, progress and checkpoints.
    """

    def __init__(
        self,
        adapter: "ChunkedAdapter",
        source_path: str,
        key: str,
        token: CancellationToken,
        part_size: int,
        workers: int,
        checkpoint: Optional[Dict[str, Any]] = None,
        on_progress: Optional[UploadProgressCallback] = None,
    ):
        self.adapter = adapter
        self.source_path = source_path
        self.key = key
        self.token = token
        self.part_size = part_size
        self.workers = workers
        self.on_progress = on_progress
        self.size = file_size(source_path)

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._checkpoint = self._initial_checkpoint(checkpoint)
        self._done = {p["part_number"]: p["etag"] for p in self._checkpoint["parts"]}
        self._remaining = self.size - confirmed_bytes(self._checkpoint)
        self._sent = 0

    def _initial_checkpoint(self, checkpoint: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if checkpoint_matches(checkpoint, self.key, self.size, self.part_size):
            logger.info(
                f"Resuming multipart upload {checkpoint['upload_id']} for {self.key} "
                f"({len(checkpoint['parts'])} parts confirmed)"
            )
            return copy.deepcopy(checkpoint)
        if checkpoint:
            logger.warning(f"Checkpoint for {self.key} does not match the source file; starting fresh")
        self.token.raise_if_cancelled()
        upload_id = self.adapter._create_multipart(self.key)
        logger.debug(f"Started multipart upload {upload_id} for {self.key}")
        return new_checkpoint(self.key, upload_id, self.size, self.part_size)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the current checkpoint with parts in order."""
        with self._lock:
            checkpoint = copy.deepcopy(self._checkpoint)
        checkpoint["parts"] = sorted(checkpoint["parts"], key=lambda p: p["part_number"])
        return checkpoint

    def run(self) -> str:
        """
        Upload all pending parts and complete the upload.

        Returns:
            ETag of the completed object

        Raises:
            Cancelled: If the token was cancelled; carries the checkpoint
            StorageError: On the first part failure; carries the checkpoint
        """
        pending = [r for r in part_ranges(self.size, self.part_size) if r.number not in self._done]
        logger.info(f"Uploading {len(pending)} parts of {self.key} with {self.workers} workers")
        self._report(0.0)

        failure: Optional[StorageError] = None
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="part") as pool:
            futures = [pool.submit(self._upload_part, part) for part in pending]
            for future in as_completed(futures):
                try:
                    future.result()
                except Cancelled:
                    self._stop.set()
                except StorageError as e:
                    self._stop.set()
                    if failure is None:
                        failure = e

        if failure is not None:
            failure.checkpoint = self.snapshot()
            logger.error(f"Multipart upload of {self.key} failed: {failure}")
            raise failure
        self.token.raise_if_cancelled(checkpoint=self.snapshot())

        parts = self.snapshot()["parts"]
        etag = self.adapter._complete_multipart(self.key, self._checkpoint["upload_id"], parts)
        logger.info(f"Completed multipart upload {self._checkpoint['upload_id']} ({len(parts)} parts)")
        return etag

    def _upload_part(self, part: PartRange) -> None:
        if self._stop.is_set():
            raise Cancelled("Skipped after stop")
        self.token.raise_if_cancelled()

        try:
            with open(self.source_path, "rb") as f:
                f.seek(part.offset)
                data = f.read(part.length)
        except OSError as e:
            raise StorageError(f"Cannot read part {part.number} of {self.source_path}: {e}") from e

        logger.debug(f"Uploading part {part.number} of {self.key} ({part.length} bytes)")
        etag = self.adapter._upload_part(self.key, self._checkpoint["upload_id"], part.number, data)

        with self._lock:
            self._checkpoint["parts"].append({"part_number": part.number, "etag": etag})
            self._done[part.number] = etag
            self._sent += part.length
            percent = 100.0 * self._sent / self._remaining if self._remaining else 100.0
            self._report(percent)

    def _report(self, percent: float) -> None:
        if self.on_progress:
            checkpoint = copy.deepcopy(self._checkpoint)
            self.on_progress(min(percent, 100.0), checkpoint)


class ChunkedAdapter(ProviderAdapter):
    """
    Base class for backends with native multipart upload.

    Files no larger than one part go through a single PUT; larger files
    use MultipartUpload and are resumable from a checkpoint.
    """

    def upload(
        self,
        source_path: str,
        destination_key: str,
        token: CancellationToken,
        checkpoint: Optional[Dict[str, Any]] = None,
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> UploadResult:
        size = file_size(source_path)
        token.raise_if_cancelled(checkpoint=checkpoint)

        if size <= self.settings.part_size:
            if checkpoint:
                logger.warning(f"Ignoring checkpoint for single-part upload of {destination_key}")
            if on_progress:
                on_progress(0.0, None)
            etag = self._put_file(destination_key, source_path)
            if on_progress:
                on_progress(100.0, None)
        else:
            etag = MultipartUpload(
                self,
                source_path,
                destination_key,
                token,
                part_size=self.settings.part_size,
                workers=self.settings.part_workers,
                checkpoint=checkpoint,
                on_progress=on_progress,
            ).run()

        return UploadResult(key=destination_key, public_url=self.public_url(destination_key), etag=etag)

    def checkpoint_percent(self, checkpoint: Optional[Dict[str, Any]], key: str, source_path: str) -> float:
        try:
            size = file_size(source_path)
        except StorageError:
            return 0.0
        if not checkpoint_matches(checkpoint, key, size, self.settings.part_size):
            return 0.0
        return 100.0 * confirmed_bytes(checkpoint) / checkpoint["file_size"]

    @abstractmethod
    def _put_file(self, key: str, source_path: str) -> Optional[str]:
        """Upload a small file in one request; returns the ETag."""

    @abstractmethod
    def _create_multipart(self, key: str) -> str:
        """Start a multipart upload; returns the upload id."""

    @abstractmethod
    def _upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """Upload one part; returns its ETag."""

    @abstractmethod
    def _complete_multipart(self, key: str, upload_id: str, parts: List[Dict[str, Any]]) -> Optional[str]:
        """Complete the upload from ``[{part_number, etag}]``; returns the ETag."""
