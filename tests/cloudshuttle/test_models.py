"""Tests for data models, settings, the URL cache and error mapping."""

from datetime import datetime

import pytest
import pytz

from cloudshuttle.exceptions import (
    AuthError,
    NetworkError,
    NotFound,
    PartialBatchFailure,
    RateLimited,
    StorageError,
    error_for_status,
)
from cloudshuttle.models import (
    Cursor,
    DownloadStatus,
    DownloadTask,
    ListPage,
    ObjectEntry,
    Profile,
    ProviderType,
    UploadEvent,
    UploadStatus,
    UploadTask,
)
from cloudshuttle.settings import MIB, TransferSettings
from cloudshuttle.url_cache import UrlCache


# ============================================================================
# Tests: Models
# ============================================================================

class TestObjectEntry:
    """Tests for ObjectEntry."""

    def test_folder_entry(self):
        entry = ObjectEntry.folder("photos/2024/")
        assert entry.is_folder
        assert entry.size == 0
        assert entry.etag is None
        assert entry.name == "2024"

    def test_to_dict(self):
        modified = datetime(2024, 1, 2, 3, 4, 5, tzinfo=pytz.UTC)
        entry = ObjectEntry(key="a/b.jpg", size=10, last_modified=modified, etag="abc")
        data = entry.to_dict()
        assert data["key"] == "a/b.jpg"
        assert data["last_modified"] == "2024-01-02T03:04:05+00:00"
        assert data["is_folder"] is False


class TestListPage:
    def test_has_more(self):
        assert not ListPage().has_more
        assert ListPage(next_cursor=Cursor(ProviderType.OSS, "marker")).has_more


class TestProfile:
    def test_credential_strips_whitespace(self):
        profile = Profile(id="p", type=ProviderType.SMMS, credentials={"token": "  abc \n"})
        assert profile.credential("token") == "abc"
        assert profile.credential("missing", "x") == "x"

    def test_blank_credential_uses_default(self):
        profile = Profile(id="p", type=ProviderType.SMMS, credentials={"token": "   "})
        assert profile.credential("token") is None


class TestTasks:
    """Tests for task serialization."""

    def test_upload_task_round_trip_keeps_checkpoint(self):
        task = UploadTask(
            source_path="/tmp/a.bin",
            destination_key="a.bin",
            status=UploadStatus.PAUSED,
            progress_percent=40.0,
            checkpoint={"upload_id": "u1", "parts": [{"part_number": 1, "etag": "e1"}]},
        )
        restored = UploadTask.from_dict(task.to_dict())
        assert restored.status == UploadStatus.PAUSED
        assert restored.checkpoint == task.checkpoint
        assert restored.id == task.id

    def test_download_task_defaults(self):
        task = DownloadTask(key="a.jpg", destination_path="/tmp/a.jpg")
        assert task.status == DownloadStatus.PREPARING
        assert DownloadTask.from_dict(task.to_dict()).completed_at is None

    def test_upload_event_omits_unset_fields(self):
        event = UploadEvent(key="k", percent=10.0, status=UploadStatus.UPLOADING)
        assert event.to_dict() == {"key": "k", "percent": 10.0, "status": "uploading"}

        event = UploadEvent(key="k", percent=0.0, status=UploadStatus.UPLOADING, resumed_from=0.0)
        assert event.to_dict()["resumed_from"] == 0.0


# ============================================================================
# Tests: Settings
# ============================================================================

class TestTransferSettings:
    """Tests for TransferSettings."""

    def test_defaults(self):
        settings = TransferSettings()
        assert settings.part_size == 5 * MIB
        assert settings.part_workers == 4
        assert settings.delete_batch_size == 1000
        assert settings.timeout == (10.0, 30.0)

    def test_part_size_minimum(self):
        with pytest.raises(ValueError):
            TransferSettings(part_size=MIB)

    def test_delete_batch_limit(self):
        with pytest.raises(ValueError):
            TransferSettings(delete_batch_size=1001)

    def test_from_dict_accepts_megabytes(self):
        settings = TransferSettings.from_dict({"part_size_mb": 8, "unknown": True})
        assert settings.part_size == 8 * MIB


# ============================================================================
# Tests: UrlCache
# ============================================================================

class TestUrlCache:
    def test_put_get_pop(self):
        cache = UrlCache()
        cache.put("a.jpg", "https://img/a.jpg", "del-1", "hash-1")

        assert "a.jpg" in cache
        assert cache.get("a.jpg").delete_token == "del-1"
        assert cache.pop("a.jpg").public_url == "https://img/a.jpg"
        assert cache.get("a.jpg") is None
        assert len(cache) == 0

    def test_put_replaces(self):
        cache = UrlCache()
        cache.put("a", "u1")
        cache.put("a", "u2")
        assert cache.get("a").public_url == "u2"
        assert len(cache) == 1


# ============================================================================
# Tests: Error mapping
# ============================================================================

class TestErrorForStatus:
    @pytest.mark.parametrize("status,expected", [
        (401, AuthError),
        (403, AuthError),
        (404, NotFound),
        (429, RateLimited),
        (500, NetworkError),
        (503, NetworkError),
        (400, StorageError),
    ])
    def test_mapping(self, status, expected):
        error = error_for_status(status, "boom")
        assert type(error) is expected
        assert str(error) == "boom"

    def test_partial_batch_failure_fields(self):
        cause = StorageError("batch rejected")
        error = PartialBatchFailure("stopped", keys_enumerated=2500, batches_completed=1, cause=cause)
        assert isinstance(error, StorageError)
        assert error.keys_enumerated == 2500
        assert error.batches_completed == 1
        assert error.cause is cause
