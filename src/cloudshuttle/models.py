"""
Data model shared by providers, orchestrators and the service facade.

Provides:
- Provider type and transfer status enums
- Profile (a saved backend configuration)
- ObjectEntry, Cursor and ListPage for listings
- UploadTask / DownloadTask records and their progress events
- Stats containers
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import pytz


# ============================================================================
# Enums
# ============================================================================

class ProviderType(str, Enum):
    """Supported backend families."""
    S3COMPAT = "s3compat"
    OSS = "oss"
    COS = "cos"
    SMMS = "smms"
    LSKY = "lsky"


class UploadStatus(str, Enum):
    """Status of an upload task."""
    PENDING = "pending"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class DownloadStatus(str, Enum):
    """Status of a download task."""
    PREPARING = "preparing"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(tz=pytz.UTC)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ============================================================================
# Profiles
# ============================================================================

@dataclass
class Profile:
    """A named backend configuration."""
    id: str
    type: ProviderType
    credentials: Dict[str, Any] = field(default_factory=dict)
    bucket: Optional[str] = None
    region: Optional[str] = None
    public_domain: Optional[str] = None
    storage_quota_bytes: Optional[int] = None
    name: Optional[str] = None

    def credential(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a credential value with surrounding whitespace removed."""
        value = self.credentials.get(name, default)
        if isinstance(value, str):
            value = value.strip()
        return value or default

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (credentials included)."""
        return {
            "id": self.id,
            "type": self.type.value,
            "credentials": dict(self.credentials),
            "bucket": self.bucket,
            "region": self.region,
            "public_domain": self.public_domain,
            "storage_quota_bytes": self.storage_quota_bytes,
            "name": self.name,
        }


# ============================================================================
# Listings
# ============================================================================

@dataclass
class ObjectEntry:
    """
    A listed item.

    Folder entries are synthetic (built from common prefixes) and never
    carry size, etag or modification time from the backend.
    """
    key: str
    is_folder: bool = False
    size: int = 0
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    public_url: Optional[str] = None

    @classmethod
    def folder(cls, key: str) -> "ObjectEntry":
        """Create a synthetic folder entry."""
        return cls(key=key, is_folder=True)

    @property
    def name(self) -> str:
        """Last path segment of the key (folders keep no trailing slash)."""
        return self.key.rstrip("/").rsplit("/", 1)[-1]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "is_folder": self.is_folder,
            "size": self.size,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "etag": self.etag,
            "public_url": self.public_url,
        }


@dataclass(frozen=True)
class Cursor:
    """
    Opaque pagination token.

    Wraps a continuation token (S3), marker (OSS/COS) or page number
    (image hosts). Callers only pass it back to the same provider.
    """
    provider: ProviderType
    token: Union[str, int]


@dataclass
class ListPage:
    """One page of a listing."""
    entries: List[ObjectEntry] = field(default_factory=list)
    next_cursor: Optional[Cursor] = None

    @property
    def has_more(self) -> bool:
        """Whether another page can be requested with ``next_cursor``."""
        return self.next_cursor is not None


@dataclass
class ProviderStats:
    """Aggregate usage reported or derived by a provider."""
    count: int = 0
    total_bytes: int = 0
    quota_bytes: Optional[int] = None


@dataclass
class BucketStats:
    """Stats returned to the caller for the active profile."""
    total_count: int
    total_size: int
    bucket_name: Optional[str]
    storage_quota_bytes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_count": self.total_count,
            "total_size": self.total_size,
            "bucket_name": self.bucket_name,
            "storage_quota_bytes": self.storage_quota_bytes,
        }


@dataclass
class UploadResult:
    """Result of a successful adapter upload."""
    key: str
    public_url: Optional[str] = None
    etag: Optional[str] = None


# ============================================================================
# Transfer tasks
# ============================================================================

@dataclass
class UploadTask:
    """Persistent record of an upload."""
    source_path: str
    destination_key: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: UploadStatus = UploadStatus.PENDING
    progress_percent: float = 0.0
    resume_offset_percent: float = 0.0
    checkpoint: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "source_path": self.source_path,
            "destination_key": self.destination_key,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "resume_offset_percent": self.resume_offset_percent,
            "checkpoint": self.checkpoint,
            "error": self.error,
            "updated_at": self.updated_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "UploadTask":
        """Create UploadTask from dictionary."""
        return UploadTask(
            id=data["id"],
            source_path=data["source_path"],
            destination_key=data["destination_key"],
            status=UploadStatus(data.get("status", "pending")),
            progress_percent=data.get("progress_percent", 0.0),
            resume_offset_percent=data.get("resume_offset_percent", 0.0),
            checkpoint=data.get("checkpoint"),
            error=data.get("error"),
            updated_at=_parse_time(data.get("updated_at")) or utcnow(),
        )


@dataclass
class DownloadTask:
    """Persistent record of a download."""
    key: str
    destination_path: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: DownloadStatus = DownloadStatus.PREPARING
    progress_percent: float = 0.0
    speed_bytes_per_sec: float = 0.0
    bytes_downloaded: int = 0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "key": self.key,
            "destination_path": self.destination_path,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "speed_bytes_per_sec": self.speed_bytes_per_sec,
            "bytes_downloaded": self.bytes_downloaded,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DownloadTask":
        """Create DownloadTask from dictionary."""
        return DownloadTask(
            id=data["id"],
            key=data["key"],
            destination_path=data["destination_path"],
            status=DownloadStatus(data.get("status", "preparing")),
            progress_percent=data.get("progress_percent", 0.0),
            speed_bytes_per_sec=data.get("speed_bytes_per_sec", 0.0),
            bytes_downloaded=data.get("bytes_downloaded", 0),
            error=data.get("error"),
            created_at=_parse_time(data.get("created_at")) or utcnow(),
            completed_at=_parse_time(data.get("completed_at")),
        )


@dataclass
class UploadEvent:
    """Progress event emitted for an upload, keyed by destination key."""
    key: str
    percent: float
    status: UploadStatus
    checkpoint: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    resumed_from: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting unset optional fields."""
        data: Dict[str, Any] = {
            "key": self.key,
            "percent": self.percent,
            "status": self.status.value,
        }
        if self.checkpoint is not None:
            data["checkpoint"] = self.checkpoint
        if self.error is not None:
            data["error"] = self.error
        if self.resumed_from is not None:
            data["resumed_from"] = self.resumed_from
        return data
