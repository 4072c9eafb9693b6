"""Tests for storage backends: key sanitizing, local disk, and B2 with a fake bucket."""
import pytest
from b2sdk.v2.exception import FileNotPresent

from paygate.core.errors import ConfigurationError, NotFound, StorageFailure, ValidationError
from paygate.core.storage import B2Storage, LocalStorage, build_storage, sanitize_key


class FakeDownloaded:
    def __init__(self, data: bytes):
        self.data = data

    def save(self, buffer):
        buffer.write(self.data)


class FakeFileVersion:
    def __init__(self, file_id: str):
        self.id_ = file_id


class FakeBucket:
    def __init__(self):
        self.objects = {}
        self.content_types = {}

    def upload_bytes(self, data, file_name, content_type=None):
        self.objects[file_name] = bytes(data)
        self.content_types[file_name] = content_type

    def download_file_by_name(self, file_name):
        if file_name not in self.objects:
            raise FileNotPresent(file_name)
        return FakeDownloaded(self.objects[file_name])

    def get_file_info_by_name(self, file_name):
        if file_name not in self.objects:
            raise FileNotPresent(file_name)
        return FakeFileVersion(f"id-{file_name}")

    def delete_file_version(self, file_id, file_name):
        assert file_id == f"id-{file_name}"
        del self.objects[file_name]


class TestSanitizeKey:
    def test_strips_leading_slashes(self):
        assert sanitize_key("/content/a/b.enc") == "content/a/b.enc"

    @pytest.mark.parametrize("key", ["", "/", "../etc/passwd", "content/../../x", "a\\..\\b"])
    def test_rejects_bad_keys(self, key):
        with pytest.raises(ValidationError):
            sanitize_key(key)

    def test_dots_inside_names_allowed(self):
        assert sanitize_key("content/a/file..name.enc") == "content/a/file..name.enc"


@pytest.fixture(params=["local", "b2"])
def backend(request, tmp_path):
    if request.param == "local":
        return LocalStorage(tmp_path / "root")
    return B2Storage(bucket=FakeBucket(), timeout=5)


class TestBackendContract:
    async def test_round_trip_is_byte_identical(self, backend):
        data = bytes(range(256)) * 10
        key = await backend.put("content/c1/x/file.enc", data)
        assert key == "content/c1/x/file.enc"
        assert await backend.get(key) == data

    async def test_missing_object(self, backend):
        with pytest.raises(NotFound):
            await backend.get("content/nothing.enc")

    async def test_delete(self, backend):
        await backend.put("a/b", b"x")
        await backend.delete("a/b")
        with pytest.raises(NotFound):
            await backend.get("a/b")
        # Deleting again is a no-op
        await backend.delete("a/b")

    async def test_rejects_escape(self, backend):
        with pytest.raises(ValidationError):
            await backend.put("../outside", b"x")
        with pytest.raises(ValidationError):
            await backend.get("a/../../outside")


async def test_local_storage_stays_under_root(tmp_path):
    storage = LocalStorage(tmp_path / "root")
    await storage.put("/nested/dir/file.bin", b"data")
    assert (tmp_path / "root" / "nested" / "dir" / "file.bin").read_bytes() == b"data"


async def test_local_delete_is_async(tmp_path, monkeypatch):
    import aiofiles.os

    removed = []
    real_remove = aiofiles.os.remove

    async def tracking_remove(path, *args, **kwargs):
        removed.append(path)
        return await real_remove(path, *args, **kwargs)

    monkeypatch.setattr(aiofiles.os, "remove", tracking_remove)
    storage = LocalStorage(tmp_path / "root")
    await storage.put("a/b", b"x")
    await storage.delete("a/b")
    assert removed == [tmp_path / "root" / "a" / "b"]
    assert not (tmp_path / "root" / "a" / "b").exists()


async def test_local_delete_failure(tmp_path):
    storage = LocalStorage(tmp_path / "root")
    (tmp_path / "root" / "dir").mkdir()
    # A directory cannot be removed as a file
    with pytest.raises(StorageFailure):
        await storage.delete("dir")


async def test_b2_passes_content_type():
    bucket = FakeBucket()
    storage = B2Storage(bucket=bucket, timeout=5)
    await storage.put("p/preview.png", b"png", "image/png")
    assert bucket.content_types["p/preview.png"] == "image/png"


async def test_b2_timeout_is_storage_failure():
    class SlowBucket(FakeBucket):
        def download_file_by_name(self, file_name):
            import time
            time.sleep(0.5)
            return FakeDownloaded(b"late")

    storage = B2Storage(bucket=SlowBucket(), timeout=0.05)
    with pytest.raises(StorageFailure):
        await storage.get("slow/object")


def test_build_storage_rejects_unknown_backend():
    with pytest.raises(ConfigurationError):
        build_storage("ftp")
