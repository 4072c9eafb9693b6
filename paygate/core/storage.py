import asyncio
import io
import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
from b2sdk.v2 import InMemoryAccountInfo, B2Api
from b2sdk.v2.exception import B2Error, FileNotPresent

from paygate.core.config import settings
from paygate.core.errors import ConfigurationError, NotFound, StorageFailure, ValidationError

logger = logging.getLogger(__name__)


def sanitize_key(key: str) -> str:
    """
    Normalizes a hierarchical storage key.
    Rejects empty keys and any '..' segment so a key can never escape the root.
    """
    if not key:
        raise ValidationError("Storage key is required")
    normalized = key.replace("\\", "/")
    if any(part == ".." for part in normalized.split("/")):
        raise ValidationError("Storage key may not contain parent directory references")
    normalized = normalized.lstrip("/")
    if not normalized:
        raise ValidationError("Storage key is required")
    return normalized


class StorageProvider(ABC):
    name = "abstract"

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Stores bytes under key, returns the normalized key."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError


class LocalStorage(StorageProvider):
    name = "local"

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_dir / sanitize_key(key)

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        safe_key = sanitize_key(key)
        destination = self.base_dir / safe_key
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(destination, "wb") as buffer:
                await buffer.write(data)
        except OSError as e:
            logger.error(f"[Storage] Local write failed for {safe_key}: {e}")
            raise StorageFailure("Failed to write object")
        return safe_key

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise NotFound("Stored object not found")
        except OSError as e:
            logger.error(f"[Storage] Local read failed for {key}: {e}")
            raise StorageFailure("Failed to read object")

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"[Storage] Local delete failed for {key}: {e}")
            raise StorageFailure("Failed to delete object")


class B2Storage(StorageProvider):
    """
    Backblaze B2 bucket. The SDK is blocking, so every call runs in a worker
    thread bounded by a timeout.
    """
    name = "b2"

    def __init__(self, bucket=None, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.STORAGE_TIMEOUT_SECONDS
        self.bucket = bucket or self._connect()

    @staticmethod
    def _connect():
        if not (settings.B2_APPLICATION_KEY_ID and settings.B2_APPLICATION_KEY and settings.B2_BUCKET_NAME):
            raise ConfigurationError("B2 credentials missing for STORAGE_BACKEND=b2")
        info = InMemoryAccountInfo()
        b2_api = B2Api(info)
        b2_api.authorize_account("production", settings.B2_APPLICATION_KEY_ID, settings.B2_APPLICATION_KEY)
        return b2_api.get_bucket_by_name(settings.B2_BUCKET_NAME)

    async def _run(self, func, *args, **kwargs):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"[Storage] B2 call {func.__name__} timed out after {self.timeout}s")
            raise StorageFailure("Object store timed out")

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        safe_key = sanitize_key(key)
        try:
            await self._run(self.bucket.upload_bytes, data, safe_key, content_type=content_type)
        except B2Error as e:
            logger.error(f"[Storage] B2 upload failed for {safe_key}: {e}")
            raise StorageFailure("Failed to write object")
        return safe_key

    def _download(self, key: str) -> bytes:
        downloaded = self.bucket.download_file_by_name(key)
        buffer = io.BytesIO()
        downloaded.save(buffer)
        return buffer.getvalue()

    async def get(self, key: str) -> bytes:
        safe_key = sanitize_key(key)
        try:
            return await self._run(self._download, safe_key)
        except FileNotPresent:
            raise NotFound("Stored object not found")
        except B2Error as e:
            logger.error(f"[Storage] B2 download failed for {safe_key}: {e}")
            raise StorageFailure("Failed to read object")

    def _delete(self, key: str) -> None:
        file_version = self.bucket.get_file_info_by_name(key)
        self.bucket.delete_file_version(file_version.id_, key)

    async def delete(self, key: str) -> None:
        safe_key = sanitize_key(key)
        try:
            await self._run(self._delete, safe_key)
        except FileNotPresent:
            return
        except B2Error as e:
            logger.error(f"[Storage] B2 delete failed for {safe_key}: {e}")
            raise StorageFailure("Failed to delete object")


def build_storage(backend: str) -> StorageProvider:
    if backend == "local":
        return LocalStorage(Path(settings.STORAGE_LOCAL_ROOT))
    if backend == "b2":
        return B2Storage()
    raise ConfigurationError(f"Unknown STORAGE_BACKEND: {backend}")


@lru_cache()
def get_storage() -> StorageProvider:
    storage = build_storage(settings.STORAGE_BACKEND)
    logger.info(f"[Storage] Using {storage.name} backend")
    return storage
