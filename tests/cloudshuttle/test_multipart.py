"""Tests for the multipart upload driver and chunked adapter base."""

import pytest

from cloudshuttle.cancellation import CancellationToken
from cloudshuttle.exceptions import Cancelled, StorageError
from cloudshuttle.providers.multipart import (
    CHECKPOINT_VERSION,
    checkpoint_matches,
    confirmed_bytes,
    new_checkpoint,
    part_ranges,
)
from cloudshuttle.settings import MIB


@pytest.fixture
def serial_adapter(adapter_factory):
    """Adapter uploading one part at a time, for deterministic ordering."""
    return adapter_factory(part_workers=1)


# ============================================================================
# Tests: Part layout and checkpoints
# ============================================================================

class TestPartRanges:
    def test_twelve_mib_in_three_parts(self):
        parts = part_ranges(12 * MIB, 5 * MIB)
        assert [p.number for p in parts] == [1, 2, 3]
        assert [p.length for p in parts] == [5 * MIB, 5 * MIB, 2 * MIB]
        assert parts[2].offset == 10 * MIB

    def test_exact_multiple(self):
        parts = part_ranges(10 * MIB, 5 * MIB)
        assert len(parts) == 2

    def test_empty_file_is_one_part(self):
        parts = part_ranges(0, 5 * MIB)
        assert len(parts) == 1
        assert parts[0].length == 0


class TestCheckpoints:
    def test_matches_same_layout(self):
        checkpoint = new_checkpoint("a.bin", "u1", 12 * MIB, 5 * MIB)
        assert checkpoint["version"] == CHECKPOINT_VERSION
        assert checkpoint_matches(checkpoint, "a.bin", 12 * MIB, 5 * MIB)

    @pytest.mark.parametrize("key,size,part_size", [
        ("b.bin", 12 * MIB, 5 * MIB),
        ("a.bin", 13 * MIB, 5 * MIB),
        ("a.bin", 12 * MIB, 6 * MIB),
    ])
    def test_mismatch(self, key, size, part_size):
        checkpoint = new_checkpoint("a.bin", "u1", 12 * MIB, 5 * MIB)
        assert not checkpoint_matches(checkpoint, key, size, part_size)

    def test_confirmed_bytes(self):
        checkpoint = new_checkpoint("a.bin", "u1", 12 * MIB, 5 * MIB)
        checkpoint["parts"] = [{"part_number": 1, "etag": "e1"}, {"part_number": 3, "etag": "e3"}]
        assert confirmed_bytes(checkpoint) == 7 * MIB


# ============================================================================
# Tests: ChunkedAdapter.upload
# ============================================================================

class TestChunkedUpload:
    """Tests for multipart uploads through the chunked adapter base."""

    def test_small_file_uses_single_put(self, memory_adapter, make_file):
        source = make_file("small.bin", 1024)
        progress = []

        result = memory_adapter.upload(
            str(source), "small.bin", CancellationToken(),
            on_progress=lambda p, cp: progress.append((p, cp)),
        )

        assert result.etag == "etag-single"
        assert memory_adapter.objects["small.bin"] == source.read_bytes()
        assert progress == [(0.0, None), (100.0, None)]
        assert memory_adapter.uploads == {}

    def test_twelve_mib_file_uploads_three_parts(self, memory_adapter, make_file):
        source = make_file("big.bin", 12 * MIB)
        progress = []

        result = memory_adapter.upload(
            str(source), "big.bin", CancellationToken(),
            on_progress=lambda p, cp: progress.append(p),
        )

        assert result.etag == "etag-multipart"
        assert sorted(memory_adapter.uploaded_parts) == [1, 2, 3]
        assert memory_adapter.objects["big.bin"] == source.read_bytes()
        assert progress == sorted(progress)
        assert progress[-1] == pytest.approx(100.0)

    def test_progress_checkpoint_lists_confirmed_parts(self, serial_adapter, make_file):
        source = make_file("big.bin", 12 * MIB)
        checkpoints = []

        serial_adapter.upload(
            str(source), "big.bin", CancellationToken(),
            on_progress=lambda p, cp: checkpoints.append(cp),
        )

        last = checkpoints[-1]
        assert [p["part_number"] for p in last["parts"]] == [1, 2, 3]
        assert last["file_size"] == 12 * MIB
        assert last["part_size"] == 5 * MIB

    def test_cancel_returns_checkpoint(self, serial_adapter, make_file):
        source = make_file("big.bin", 12 * MIB)
        token = CancellationToken()
        serial_adapter.part_hook = lambda n: token.cancel("Paused by user") if n == 1 else None

        with pytest.raises(Cancelled) as exc_info:
            serial_adapter.upload(str(source), "big.bin", token)

        checkpoint = exc_info.value.checkpoint
        assert [p["part_number"] for p in checkpoint["parts"]] == [1]
        assert serial_adapter.uploaded_parts == [1]
        assert "big.bin" not in serial_adapter.objects

    def test_resume_skips_confirmed_parts(self, serial_adapter, make_file):
        source = make_file("big.bin", 12 * MIB)
        data = source.read_bytes()
        upload_id = serial_adapter._create_multipart("big.bin")
        serial_adapter.uploads[upload_id][1] = data[:5 * MIB]
        checkpoint = new_checkpoint("big.bin", upload_id, 12 * MIB, 5 * MIB)
        checkpoint["parts"] = [{"part_number": 1, "etag": "etag-1"}]

        assert serial_adapter.checkpoint_percent(checkpoint, "big.bin", str(source)) == pytest.approx(100.0 * 5 / 12)

        serial_adapter.upload(str(source), "big.bin", CancellationToken(), checkpoint)

        assert serial_adapter.uploaded_parts == [2, 3]
        assert serial_adapter.objects["big.bin"] == data

    def test_mismatched_checkpoint_starts_fresh(self, serial_adapter, make_file):
        source = make_file("big.bin", 12 * MIB)
        stale = new_checkpoint("big.bin", "old-upload", 20 * MIB, 5 * MIB)
        stale["parts"] = [{"part_number": 1, "etag": "x"}]

        assert serial_adapter.checkpoint_percent(stale, "big.bin", str(source)) == 0.0
        assert serial_adapter.checkpoint_percent(stale, "other.bin", str(source)) == 0.0
        assert serial_adapter.checkpoint_percent(stale, "big.bin", str(source) + ".missing") == 0.0

        serial_adapter.upload(str(source), "big.bin", CancellationToken(), stale)

        assert serial_adapter.uploaded_parts == [1, 2, 3]
        assert "old-upload" not in serial_adapter.uploads

    def test_part_failure_carries_checkpoint(self, serial_adapter, make_file):
        source = make_file("big.bin", 12 * MIB)
        serial_adapter.fail_part = 2

        with pytest.raises(StorageError) as exc_info:
            serial_adapter.upload(str(source), "big.bin", CancellationToken())

        confirmed = [p["part_number"] for p in exc_info.value.checkpoint["parts"]]
        assert 1 in confirmed
        assert 2 not in confirmed
        assert "big.bin" not in serial_adapter.objects

    def test_missing_source_file(self, memory_adapter, temp_dir):
        with pytest.raises(StorageError):
            memory_adapter.upload(str(temp_dir / "nope.bin"), "nope.bin", CancellationToken())
