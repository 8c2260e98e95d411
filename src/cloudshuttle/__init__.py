"""
cloudshuttle: one interface over S3-compatible stores, Aliyun OSS,
Tencent COS and the SM.MS / Lsky Pro image hosts.

Provides:
- Paginated folder listings and prefix-independent search
- Resumable chunked uploads with pause/resume and progress events
- Streaming downloads with throughput reporting
- Batched recursive folder delete and bucket statistics
"""

from .config import AppConfig, ConfigManager, ProfileManager, ProviderFactory
from .exceptions import (
    AuthError,
    Cancelled,
    ConfigurationError,
    NetworkError,
    NotFound,
    PartialBatchFailure,
    RateLimited,
    StorageError,
    TransferConflict,
    Unsupported,
)
from .models import (
    BucketStats,
    Cursor,
    DownloadStatus,
    DownloadTask,
    ListPage,
    ObjectEntry,
    Profile,
    ProviderType,
    UploadStatus,
    UploadTask,
)
from .service import StorageService
from .settings import TransferSettings

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "AuthError",
    "BucketStats",
    "Cancelled",
    "ConfigManager",
    "ConfigurationError",
    "Cursor",
    "DownloadStatus",
    "DownloadTask",
    "ListPage",
    "NetworkError",
    "NotFound",
    "ObjectEntry",
    "PartialBatchFailure",
    "Profile",
    "ProfileManager",
    "ProviderFactory",
    "ProviderType",
    "RateLimited",
    "StorageError",
    "StorageService",
    "TransferConflict",
    "TransferSettings",
    "Unsupported",
    "UploadStatus",
    "UploadTask",
]
