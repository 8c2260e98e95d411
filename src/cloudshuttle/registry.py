"""
Process-wide registry of in-flight transfers.

Invariants:
- At most one live handle per key (destination key for uploads, task id
  for downloads); a second registration raises TransferConflict.
- A handle is removed exactly once, by the owner that registered it,
  from the transfer's ``finally`` path.
- All mutation happens under one lock.
"""

import logging
import threading
from typing import Dict, List, Optional

from .cancellation import CancellationToken
from .exceptions import TransferConflict

logger = logging.getLogger(__name__)


class TransferRegistry:
    """Thread-safe map of transfer key -> cancellation token."""

    def __init__(self) -> None:
        self._handles: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, key: str, token: Optional[CancellationToken] = None) -> CancellationToken:
        """
        Register a live transfer.

        Args:
            key: Destination key (uploads) or task id (downloads)
            token: Token to register; a new one is created if omitted

        Returns:
            The registered token

        Raises:
            TransferConflict: If the key already has a live transfer
        """
        token = token or CancellationToken()
        with self._lock:
            if key in self._handles:
                raise TransferConflict(
                    f"A transfer for '{key}' is already in progress; pause or cancel it first"
                )
            self._handles[key] = token
        logger.debug(f"Registered transfer {key}")
        return token

    def release(self, key: str, token: CancellationToken) -> bool:
        """
        Remove a handle if ``token`` still owns it.

        Returns:
            True if the handle was removed, False if it was already gone
            or belongs to a newer transfer
        """
        with self._lock:
            if self._handles.get(key) is token:
                del self._handles[key]
                logger.debug(f"Released transfer {key}")
                return True
        return False

    def cancel(self, key: str, reason: str = "Cancelled by user") -> bool:
        """
        Signal cancellation of a live transfer.

        The handle stays registered until the transfer's own body reaches
        its terminal path and releases it.

        Returns:
            True if a live transfer was signalled
        """
        with self._lock:
            token = self._handles.get(key)
        if token is None:
            return False
        token.cancel(reason)
        logger.info(f"Cancellation requested for {key}")
        return True

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._handles

    def active_keys(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
