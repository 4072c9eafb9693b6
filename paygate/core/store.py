"""
Keyed record store.

Callers only get get/put/compare_and_swap so every state transition that
matters (intent confirmation, grant creation) goes through a versioned
check-and-set instead of a read-then-write pair.
"""
import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import JSON, Column, DateTime, Integer, String, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from paygate.core.db import Base


@dataclass(frozen=True)
class StoredRecord:
    value: Dict[str, Any]
    version: int


class KeyedStore(ABC):

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[StoredRecord]:
        raise NotImplementedError

    @abstractmethod
    async def put(self, collection: str, key: str, value: Dict[str, Any]) -> StoredRecord:
        """Unconditional write."""
        raise NotImplementedError

    @abstractmethod
    async def compare_and_swap(self, collection: str, key: str, expected_version: int, value: Dict[str, Any]) -> bool:
        """
        Writes value only if the stored version equals expected_version.
        expected_version=0 means the key must not exist yet (insert-if-absent).
        """
        raise NotImplementedError

    @abstractmethod
    async def list(self, collection: str) -> List[StoredRecord]:
        raise NotImplementedError


class MemoryStore(KeyedStore):
    """Process-local store guarded by a mutex. Tests and single-process dev only."""

    def __init__(self):
        self._data: Dict[Tuple[str, str], StoredRecord] = {}
        self._lock = threading.Lock()

    async def get(self, collection: str, key: str) -> Optional[StoredRecord]:
        with self._lock:
            record = self._data.get((collection, key))
            return copy.deepcopy(record) if record else None

    async def put(self, collection: str, key: str, value: Dict[str, Any]) -> StoredRecord:
        with self._lock:
            current = self._data.get((collection, key))
            record = StoredRecord(value=copy.deepcopy(value), version=(current.version if current else 0) + 1)
            self._data[(collection, key)] = record
            return copy.deepcopy(record)

    async def compare_and_swap(self, collection: str, key: str, expected_version: int, value: Dict[str, Any]) -> bool:
        with self._lock:
            current = self._data.get((collection, key))
            current_version = current.version if current else 0
            if current_version != expected_version:
                return False
            self._data[(collection, key)] = StoredRecord(value=copy.deepcopy(value), version=expected_version + 1)
            return True

    async def list(self, collection: str) -> List[StoredRecord]:
        with self._lock:
            return [copy.deepcopy(r) for (c, _), r in self._data.items() if c == collection]


class KeyedRecord(Base):
    __tablename__ = "keyed_records"

    collection = Column(String(64), primary_key=True)
    key = Column(String(255), primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    data = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class SqlStore(KeyedStore):
    """Transactional store on any async SQLAlchemy backend (asyncpg in production)."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create_all(self) -> None:
        async with self.session_factory() as db:
            conn = await db.connection()
            await conn.run_sync(Base.metadata.create_all)
            await db.commit()

    async def get(self, collection: str, key: str) -> Optional[StoredRecord]:
        async with self.session_factory() as db:
            row = await db.get(KeyedRecord, (collection, key))
            if row is None:
                return None
            return StoredRecord(value=copy.deepcopy(row.data), version=row.version)

    async def put(self, collection: str, key: str, value: Dict[str, Any]) -> StoredRecord:
        async with self.session_factory() as db:
            row = await db.get(KeyedRecord, (collection, key))
            if row is None:
                row = KeyedRecord(collection=collection, key=key, version=1, data=value)
                db.add(row)
            else:
                row.version = row.version + 1
                row.data = value
            try:
                await db.commit()
            except IntegrityError:
                # Lost an insert race; overwrite as an update
                await db.rollback()
                await db.execute(
                    update(KeyedRecord)
                    .where(KeyedRecord.collection == collection, KeyedRecord.key == key)
                    .values(data=value, version=KeyedRecord.version + 1)
                )
                await db.commit()
                row = await db.get(KeyedRecord, (collection, key), populate_existing=True)
            return StoredRecord(value=copy.deepcopy(row.data), version=row.version)

    async def compare_and_swap(self, collection: str, key: str, expected_version: int, value: Dict[str, Any]) -> bool:
        async with self.session_factory() as db:
            if expected_version == 0:
                db.add(KeyedRecord(collection=collection, key=key, version=1, data=value))
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    return False
                return True

            result = await db.execute(
                update(KeyedRecord)
                .where(
                    KeyedRecord.collection == collection,
                    KeyedRecord.key == key,
                    KeyedRecord.version == expected_version,
                )
                .values(data=value, version=expected_version + 1)
            )
            await db.commit()
            return result.rowcount == 1

    async def list(self, collection: str) -> List[StoredRecord]:
        async with self.session_factory() as db:
            result = await db.execute(select(KeyedRecord).where(KeyedRecord.collection == collection))
            return [StoredRecord(value=copy.deepcopy(r.data), version=r.version) for r in result.scalars().all()]
