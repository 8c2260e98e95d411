"""
Cooperative cancellation tokens.

A token is created per transfer and threaded through every adapter call.
Adapters check it at their I/O boundaries (before each part, each
download chunk, around each HTTP request); cancellation is never
preemptive, so a cancel may take up to one in-flight request to land.
"""

import threading
from typing import Optional

from .exceptions import Cancelled


class CancellationToken:
    """Per-transfer cancellation signal."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "Cancelled by user") -> None:
        """Request cancellation. Idempotent."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self, checkpoint=None) -> None:
        """
        Raise Cancelled if cancellation was requested.

        Args:
            checkpoint: Resume state to attach to the exception
        """
        if self._event.is_set():
            raise Cancelled(self._reason or "Cancelled", checkpoint=checkpoint)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout expires."""
        return self._event.wait(timeout)

