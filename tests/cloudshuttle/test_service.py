"""Tests for the StorageService facade."""

import pytest

from cloudshuttle.config import AppConfig, ProfileManager
from cloudshuttle.exceptions import ConfigurationError, Unsupported
from cloudshuttle.models import Profile, ProviderType, UploadStatus
from cloudshuttle.service import SEARCH_CHANNEL, StorageService


@pytest.fixture
def events():
    return []


@pytest.fixture
def service(profile, settings, memory_adapter, temp_dir, events):
    other = Profile(id="backup", type=ProviderType.S3COMPAT, bucket="backup")
    config = AppConfig(
        profiles=[profile, other],
        active_profile=profile.id,
        settings=settings,
        task_store_path=temp_dir / "state" / "tasks.json",
        activity_db_path=temp_dir / "state" / "activity.db",
    )
    adapters = {profile.id: memory_adapter}
    manager = ProfileManager(
        config.profiles,
        config.active_profile,
        settings,
        factory=lambda p, s: adapters.setdefault(p.id, type(memory_adapter)(p, s)),
    )
    svc = StorageService(config, lambda c, p: events.append((c, p)), profiles=manager)
    yield svc
    svc.shutdown()


class TestStorageService:
    """Tests for StorageService."""

    def test_list_objects_folder_view(self, service, memory_adapter):
        memory_adapter.objects.update({"docs/": b"", "docs/a.txt": b"1", "docs/sub/b.txt": b"2"})

        page = service.list_objects("docs/")

        assert [e.key for e in page.entries] == ["docs/a.txt", "docs/sub/"]
        assert not page.has_more

    def test_list_objects_flat(self, service, memory_adapter):
        memory_adapter.objects.update({"docs/a.txt": b"1", "docs/sub/b.txt": b"2"})

        page = service.list_objects("docs/", delimiter=None)

        assert [e.key for e in page.entries] == ["docs/a.txt", "docs/sub/b.txt"]

    def test_create_folder_adds_trailing_slash(self, service, memory_adapter):
        assert service.create_folder("albums/2024") == "albums/2024/"
        assert memory_adapter.objects["albums/2024/"] == b""

    def test_delete_object_missing_key_succeeds(self, service):
        service.delete_object("never-existed.txt")
        entry = service.activity.recent(1)[0]
        assert (entry.operation, entry.key) == ("delete", "never-existed.txt")

    def test_delete_folder(self, service, memory_adapter):
        memory_adapter.objects.update({"tmp/": b"", "tmp/a": b"1", "other": b"2"})
        assert service.delete_folder("tmp/") == 2
        assert list(memory_adapter.objects) == ["other"]

    def test_presigned_url(self, service):
        assert service.get_presigned_url("a.jpg", 60) == "https://signed.example.com/a.jpg?ttl=60"

    def test_bucket_stats(self, service, memory_adapter):
        memory_adapter.objects.update({"a": b"123", "b": b"45"})
        assert service.get_bucket_stats() == {
            "total_count": 2,
            "total_size": 5,
            "bucket_name": "media",
            "storage_quota_bytes": None,
        }

    def test_upload_and_download(self, service, make_file, memory_adapter):
        source = make_file("note.txt", 64)

        task = service.upload_file(str(source), "notes/note.txt").result(timeout=10)
        assert task.status == UploadStatus.COMPLETED
        assert [t.destination_key for t in service.upload_tasks()] == ["notes/note.txt"]

        download = service.download_file("notes/note.txt").result(timeout=10)
        assert open(download.destination_path, "rb").read() == source.read_bytes()
        assert [t.id for t in service.download_tasks()] == [download.id]
        assert service.clear_finished_downloads() == 1

    def test_start_search_emits_events(self, service, memory_adapter, events):
        memory_adapter.objects.update({"a.jpg": b"1", "b.png": b"2"})

        assert service.start_search("JPG").result(timeout=10) == 1

        search_events = [p for c, p in events if c == SEARCH_CHANNEL]
        assert [e["type"] for e in search_events] == ["results-chunk", "end"]

    def test_iter_search(self, service, memory_adapter):
        memory_adapter.objects["x.jpg"] = b"1"
        assert list(service.iter_search("nothing")) == [{"type": "end", "term": "nothing", "total": 0}]

    def test_switch_profile(self, service, memory_adapter):
        memory_adapter.objects["a.jpg"] = b"1"
        assert len(service.list_objects("").entries) == 1

        profile = service.switch_profile("backup")

        assert profile.id == "backup"
        assert service.active_profile.id == "backup"
        assert memory_adapter.closed
        assert service.list_objects("").entries == []

    def test_switch_refused_during_transfer(self, service):
        service.registry.register("busy.bin")
        with pytest.raises(ConfigurationError):
            service.switch_profile("backup")

    def test_unknown_profile(self, service):
        with pytest.raises(ConfigurationError):
            service.switch_profile("nope")

    def test_operation_without_folders(self, service, memory_adapter, monkeypatch):
        def refuse(key):
            raise Unsupported("no folders")

        monkeypatch.setattr(memory_adapter, "create_marker", refuse)
        with pytest.raises(Unsupported):
            service.create_folder("x")

    def test_shutdown_cancels_live_transfers(self, service):
        token = service.registry.register("live.bin")
        service.shutdown()
        assert token.cancelled


def test_no_active_profile(temp_dir):
    config = AppConfig(
        profiles=[],
        task_store_path=temp_dir / "tasks.json",
        activity_db_path=temp_dir / "activity.db",
    )
    service = StorageService(config)
    try:
        with pytest.raises(ConfigurationError):
            service.list_objects("")
        with pytest.raises(ConfigurationError):
            service.upload_file(str(temp_dir / "a.txt"), "a.txt")
        assert len(service.registry) == 0
    finally:
        service.shutdown()
