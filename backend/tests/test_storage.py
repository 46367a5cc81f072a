"""Tests for TempStorageManager and the /temp download route.

A fake clock drives expiry so nothing sleeps.
"""
import asyncio
import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from fxgate.core.errors import StorageError
from fxgate.storage.service import TempStorageManager, detect_mime_type, run_periodic_cleanup, safe_filename


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def storage(tmp_path, clock) -> TempStorageManager:
    return TempStorageManager(
        str(tmp_path / "store"),
        file_lifetime=60,
        max_total_bytes=1000,
        max_file_bytes=500,
        orphan_max_age=3600,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_detect_mime_type(self):
        assert detect_mime_type("a.PNG") == "image/png"
        assert detect_mime_type("sticker.webp") == "image/webp"
        assert detect_mime_type("noext") == "application/octet-stream"

    def test_safe_filename_is_unique_and_clean(self):
        first = safe_filename("my photo!.png")
        second = safe_filename("my photo!.png")
        assert first != second
        assert first.startswith("my_photo_")
        assert first.endswith(".png")
        assert " " not in first and "!" not in first


# ---------------------------------------------------------------------------
# Create / read / delete
# ---------------------------------------------------------------------------

class TestCreateAndRead:
    def test_round_trip(self, storage: TempStorageManager):
        record = storage.create_temp_file(b"hello", "greeting.txt", tags=["t"])
        assert len(record.id) == 32
        assert record.download_url == f"/temp/{record.id}"
        assert record.mime_type == "text/plain"
        assert Path(record.path).read_bytes() == b"hello"

        content, again = storage.read_temp_file(record.id)
        assert content == b"hello"
        assert again.access_count == 1

    def test_lifetime_sets_expiry(self, storage: TempStorageManager):
        record = storage.create_temp_file(b"x", "a.bin", lifetime=10)
        assert (record.expires_at - record.created_at).total_seconds() == 10

    def test_file_too_large(self, storage: TempStorageManager):
        with pytest.raises(StorageError) as excinfo:
            storage.create_temp_file(b"x" * 501, "big.bin")
        assert excinfo.value.code == "FILE_TOO_LARGE"

    def test_zero_lifetime_is_not_the_default(self, storage: TempStorageManager):
        record = storage.create_temp_file(b"x", "a.bin", lifetime=0)
        assert record.expires_at == record.created_at

    def test_file_over_total_cap_rejected(self, tmp_path, clock: FakeClock):
        small = TempStorageManager(
            str(tmp_path / "small"), file_lifetime=60, max_total_bytes=300, max_file_bytes=500, clock=clock,
        )
        kept = small.create_temp_file(b"k" * 100, "kept.bin")
        with pytest.raises(StorageError) as excinfo:
            small.create_temp_file(b"x" * 400, "big.bin")
        assert excinfo.value.code == "FILE_TOO_LARGE"
        assert small.read_temp_file(kept.id)[0] == b"k" * 100
        assert small.get_storage_usage().total_size == 100

    def test_content_must_be_bytes(self, storage: TempStorageManager):
        with pytest.raises(StorageError):
            storage.create_temp_file("text", "a.txt")

    def test_unknown_id(self, storage: TempStorageManager):
        with pytest.raises(StorageError) as excinfo:
            storage.read_temp_file("0" * 32)
        assert excinfo.value.code == "FILE_NOT_FOUND"

    def test_expired_file_is_not_served(self, storage: TempStorageManager, clock: FakeClock):
        record = storage.create_temp_file(b"x", "a.bin")
        clock.advance(61)
        with pytest.raises(StorageError) as excinfo:
            storage.read_temp_file(record.id)
        assert excinfo.value.code == "FILE_NOT_FOUND"
        assert not Path(record.path).exists()
        assert len(storage) == 0

    def test_missing_on_disk(self, storage: TempStorageManager):
        record = storage.create_temp_file(b"x", "a.bin")
        os.unlink(record.path)
        with pytest.raises(StorageError) as excinfo:
            storage.read_temp_file(record.id)
        assert excinfo.value.code == "FILE_MISSING"

    def test_oldest_files_evicted_to_make_room(self, storage: TempStorageManager, clock: FakeClock):
        first = storage.create_temp_file(b"a" * 400, "a.bin")
        clock.advance(1)
        second = storage.create_temp_file(b"b" * 400, "b.bin")
        clock.advance(1)
        third = storage.create_temp_file(b"c" * 400, "c.bin")

        with pytest.raises(StorageError):
            storage.read_temp_file(first.id)
        assert storage.read_temp_file(second.id)[0] == b"b" * 400
        assert storage.read_temp_file(third.id)[0] == b"c" * 400
        assert storage.get_storage_usage().total_size == 800

    def test_delete(self, storage: TempStorageManager):
        record = storage.create_temp_file(b"x", "a.bin")
        result = storage.delete_file(record.id)
        assert result["fileId"] == record.id
        assert not Path(record.path).exists()
        with pytest.raises(StorageError):
            storage.delete_file(record.id)


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------

class TestIntrospection:
    def test_file_info(self, storage: TempStorageManager):
        record = storage.create_temp_file(b"abc", "a.png", metadata={"k": "v"})
        info = storage.get_file_info(record.id)
        assert info["id"] == record.id
        assert info["diskSize"] == 3
        assert info["mimeType"] == "image/png"
        assert info["metadata"] == {"k": "v"}

    def test_list_filters(self, storage: TempStorageManager, clock: FakeClock):
        storage.create_temp_file(b"a", "a.png", tags=["qr"])
        clock.advance(1)
        storage.create_temp_file(b"bb", "b.webp", tags=["sticker"])
        clock.advance(1)
        storage.create_temp_file(b"ccc", "c.txt")

        listed = storage.list_files()
        assert listed["count"] == 3
        assert listed["totalSize"] == 6
        assert [item["size"] for item in listed["files"]] == [3, 2, 1]
        assert storage.list_files(mime_type="image/")["count"] == 2
        assert storage.list_files(tags=["qr"])["count"] == 1
        assert storage.list_files(min_size=2, max_size=2)["count"] == 1

    def test_usage(self, storage: TempStorageManager):
        storage.create_temp_file(b"x" * 100, "a.bin")
        usage = storage.get_storage_usage().to_dict()
        assert usage["totalSize"] == 100
        assert usage["fileCount"] == 1
        assert usage["usagePercentage"] == 10.0
        assert usage["fileLifetime"] == 60

    def test_json_helpers(self, storage: TempStorageManager):
        record = storage.store_json({"a": [1, 2]})
        assert record.mime_type == "application/json"
        data, _ = storage.read_json(record.id)
        assert data == {"a": [1, 2]}


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

class TestCleanup:
    def test_removes_only_expired(self, storage: TempStorageManager, clock: FakeClock):
        old = storage.create_temp_file(b"old", "old.bin", lifetime=10)
        fresh = storage.create_temp_file(b"new", "new.bin")
        clock.advance(11)

        result = storage.cleanup_old_files()
        assert result.deleted_count == 1
        assert result.freed_space == 3
        assert result.remaining_files == 1
        assert not Path(old.path).exists()
        assert Path(fresh.path).exists()

    def test_force_removes_everything(self, storage: TempStorageManager):
        storage.create_temp_file(b"a", "a.bin")
        storage.create_temp_file(b"b", "b.bin")
        assert storage.cleanup_old_files(force=True).deleted_count == 2
        assert len(storage) == 0

    def test_stale_orphans_removed(self, storage: TempStorageManager):
        stale = storage.base_dir / "stale.bin"
        stale.write_bytes(b"zz")
        os.utime(stale, (0, 0))
        recent = storage.base_dir / "recent.bin"
        recent.write_bytes(b"zz")
        tracked = storage.create_temp_file(b"t", "t.bin")
        os.utime(tracked.path, (0, 0))

        result = storage.cleanup_old_files()
        assert not stale.exists()
        assert recent.exists()
        assert Path(tracked.path).exists()
        assert result.deleted_count == 1

    @pytest.mark.asyncio
    async def test_periodic_cleanup_loop(self, storage: TempStorageManager, clock: FakeClock):
        record = storage.create_temp_file(b"x", "a.bin", lifetime=1)
        clock.advance(5)
        shutdown = asyncio.Event()
        task = asyncio.create_task(run_periodic_cleanup(storage, shutdown, interval_seconds=60))
        await asyncio.sleep(0.05)
        shutdown.set()
        await asyncio.wait_for(task, timeout=2)
        assert not Path(record.path).exists()


# ---------------------------------------------------------------------------
# GET /temp/{file_id}
# ---------------------------------------------------------------------------

class TestDownloadRoute:
    def test_serves_file(self, api_client: TestClient):
        storage = api_client.app.state.storage
        record = storage.create_temp_file(b"\x89PNG-data", "code.png")
        resp = api_client.get(record.download_url)
        assert resp.status_code == 200
        assert resp.content == b"\x89PNG-data"
        assert resp.headers["content-type"] == "image/png"
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert record.filename in resp.headers["content-disposition"]

    def test_unknown_file(self, api_client: TestClient):
        resp = api_client.get("/temp/" + "f" * 32)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "FILE_NOT_FOUND"
