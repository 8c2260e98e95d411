"""
Shared fixtures for cloudshuttle tests.

Provides an in-memory chunked adapter so orchestrators, pagination and bulk
operations can be exercised without any vendor SDK or network access.
"""

import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from cloudshuttle.exceptions import NotFound, StorageError
from cloudshuttle.models import ListPage, ObjectEntry, Profile, ProviderType
from cloudshuttle.providers.base import Capabilities, write_stream
from cloudshuttle.providers.multipart import ChunkedAdapter
from cloudshuttle.settings import MIB, TransferSettings


class MemoryAdapter(ChunkedAdapter):
    """Chunked adapter keeping objects in a dict."""

    provider_type = ProviderType.S3COMPAT
    capabilities = Capabilities(chunked_upload=True, presign=True)

    def __init__(self, profile: Profile, settings: Optional[TransferSettings] = None):
        super().__init__(profile, settings)
        self.objects: Dict[str, bytes] = {}
        self.uploads: Dict[str, Dict[int, bytes]] = {}
        self.uploaded_parts: List[int] = []
        self.delete_calls: List[List[str]] = []
        self.list_calls = 0
        self.fail_list_on_call: Optional[int] = None
        self.fail_delete_on_call: Optional[int] = None
        self.fail_part: Optional[int] = None
        self.part_hook = None
        self.closed = False
        self._lock = threading.Lock()
        self._uploads_started = 0

    def test_connection(self) -> None:
        pass

    def list(self, prefix="", cursor=None, delimiter=None) -> ListPage:
        self.list_calls += 1
        if self.fail_list_on_call == self.list_calls:
            raise StorageError("listing exploded")

        keys = sorted(k for k in self.objects if k.startswith(prefix))
        entries: List[ObjectEntry] = []
        folders = set()
        for key in keys:
            rest = key[len(prefix):]
            if delimiter and delimiter in rest:
                folder = prefix + rest.split(delimiter, 1)[0] + delimiter
                if folder not in folders:
                    folders.add(folder)
                    entries.append(ObjectEntry.folder(folder))
                continue
            entries.append(ObjectEntry(key=key, size=len(self.objects[key])))

        start = int(self._unwrap(cursor) or 0)
        size = self.settings.list_page_size
        page = entries[start:start + size]
        next_start = start + size if start + size < len(entries) else None
        return ListPage(entries=page, next_cursor=self._cursor(next_start))

    def _put_file(self, key: str, source_path: str) -> Optional[str]:
        self.objects[key] = Path(source_path).read_bytes()
        return "etag-single"

    def _create_multipart(self, key: str) -> str:
        with self._lock:
            self._uploads_started += 1
            upload_id = f"upload-{self._uploads_started}"
            self.uploads[upload_id] = {}
        return upload_id

    def _upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        if self.part_hook is not None:
            self.part_hook(part_number)
        if self.fail_part == part_number:
            raise StorageError(f"part {part_number} rejected")
        with self._lock:
            self.uploads[upload_id][part_number] = data
            self.uploaded_parts.append(part_number)
        return f"etag-{part_number}"

    def _complete_multipart(self, key: str, upload_id: str, parts: List[Dict[str, Any]]) -> Optional[str]:
        stored = self.uploads[upload_id]
        self.objects[key] = b"".join(stored[p["part_number"]] for p in parts)
        return "etag-multipart"

    def download(self, key, destination_path, token, on_progress=None) -> None:
        if key not in self.objects:
            raise NotFound(f"{key} missing")
        data = self.objects[key]
        chunks = [data[i:i + 4] for i in range(0, len(data), 4)]
        write_stream(chunks, destination_path, token, total=len(data), on_progress=on_progress)

    def _delete(self, key: str) -> None:
        if key not in self.objects:
            raise NotFound(key)
        del self.objects[key]

    def delete_many(self, keys: List[str]) -> None:
        self._check_batch(keys)
        self.delete_calls.append(list(keys))
        if self.fail_delete_on_call == len(self.delete_calls):
            raise StorageError("batch rejected")
        for key in keys:
            self.objects.pop(key, None)

    def create_marker(self, key: str) -> None:
        self.objects[key] = b""

    def presign(self, key: str, ttl: int = 900) -> Optional[str]:
        return f"https://signed.example.com/{key}?ttl={ttl}"

    def close(self) -> None:
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def profile():
    """An S3-compatible profile with dummy credentials."""
    return Profile(
        id="r2-main",
        type=ProviderType.S3COMPAT,
        credentials={
            "access_key_id": "AKIAEXAMPLE",
            "secret_access_key": "secret-example",
            "account_id": "abc123",
        },
        bucket="media",
    )


@pytest.fixture
def settings(temp_dir):
    """Transfer settings with small listing pages and a temp download dir."""
    return TransferSettings(
        part_size=5 * MIB,
        part_workers=2,
        max_concurrent_transfers=2,
        list_page_size=1000,
        throughput_window=0.0,
        download_dir=temp_dir / "downloads",
    )


@pytest.fixture
def memory_adapter(profile, settings):
    """In-memory chunked adapter."""
    return MemoryAdapter(profile, settings)


@pytest.fixture
def make_file(temp_dir):
    """Factory writing a file of ``size`` bytes with a repeating pattern."""
    def _make(name: str, size: int) -> Path:
        path = temp_dir / name
        pattern = bytes(range(256))
        with open(path, "wb") as f:
            full, rest = divmod(size, len(pattern))
            for _ in range(full):
                f.write(pattern)
            f.write(pattern[:rest])
        return path
    return _make


@pytest.fixture
def adapter_factory(profile, temp_dir):
    """Factory building a MemoryAdapter with custom transfer settings."""
    def _make(**overrides) -> MemoryAdapter:
        overrides.setdefault("download_dir", temp_dir / "downloads")
        return MemoryAdapter(profile, TransferSettings(**overrides))
    return _make
