"""
Exception hierarchy for storage provider and transfer errors.

Adapters wrap vendor-specific errors (botocore, oss2, qcloud_cos, requests)
into these standard exception types so orchestrators and callers can react
to a failure without knowing which backend produced it.
"""

from typing import Any, Dict, Optional


class StorageError(Exception):
    """
    Base exception for all storage errors.

    A multipart upload that fails part-way attaches its last confirmed
    checkpoint so the caller can resume from it manually.
    """

    def __init__(self, message: str = "", checkpoint: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.checkpoint = checkpoint


class ConfigurationError(StorageError):
    """
    Raised when no usable profile is configured.

    Reasons may include:
    - No active profile selected
    - Missing required credential fields
    - Unknown provider type
    - Switching profiles while transfers are still running

    Raised before any transfer is registered.
    """

    pass


class AuthError(StorageError):
    """
    Raised when the provider rejects the credentials.

    Reasons may include:
    - Invalid access key / secret / token
    - Signature mismatch (clock skew, wrong secret)
    - Insufficient permissions on the bucket
    """

    pass


class NotFound(StorageError):
    """Raised when a key, bucket or cached URL does not exist."""

    pass


class RateLimited(StorageError):
    """
    Raised when the provider throttles requests.

    This is a transient error. The core does not back off on its own;
    the caller decides when to retry.
    """

    pass


class NetworkError(StorageError):
    """
    Raised when the provider cannot be reached or a request times out.

    Reasons may include:
    - Connect or read timeout
    - DNS resolution failure
    - Connection reset mid-transfer
    - Provider returned a 5xx response
    """

    pass


class Cancelled(StorageError):
    """
    Raised when a transfer observes a cancellation request.

    For chunkable backends ``checkpoint`` holds the parts confirmed so far.
    Orchestrators report this as a pause, never as a failure.
    """

    pass


class Unsupported(StorageError):
    """Raised when the active backend does not implement a capability."""

    pass


class TransferConflict(StorageError):
    """Raised when a transfer is started for a key that already has one in flight."""

    pass


class PartialBatchFailure(StorageError):
    """
    Raised when a bulk delete stops part-way.

    Only the number of keys enumerated before the aborting batch is
    reported; per-key status is not tracked. Batches already deleted are
    not rolled back.
    """

    def __init__(
        self,
        message: str,
        keys_enumerated: int,
        batches_completed: int,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.keys_enumerated = keys_enumerated
        self.batches_completed = batches_completed
        self.cause = cause


def error_for_status(status: int, message: str) -> StorageError:
    """
    Map an HTTP status code onto the error taxonomy.

    Args:
        status: HTTP status code returned by the provider
        message: Human-readable error message

    Returns:
        StorageError subclass instance (not raised)
    """
    if status in (401, 403):
        return AuthError(message)
    if status == 404:
        return NotFound(message)
    if status == 429:
        return RateLimited(message)
    if status >= 500:
        return NetworkError(message)
    return StorageError(message)
