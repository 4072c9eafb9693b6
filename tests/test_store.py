"""Tests for the keyed store contract on both implementations."""
import asyncio

import pytest

from paygate.core.db import build_engine, build_sessionmaker
from paygate.core.store import MemoryStore, SqlStore


@pytest.fixture(params=["memory", "sql"])
async def keyed_store(request, tmp_path):
    if request.param == "memory":
        yield MemoryStore()
        return
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    store = SqlStore(build_sessionmaker(engine))
    await store.create_all()
    yield store
    await engine.dispose()


class TestKeyedStore:
    async def test_get_missing(self, keyed_store):
        assert await keyed_store.get("intents", "nope") is None

    async def test_put_and_get(self, keyed_store):
        first = await keyed_store.put("intents", "a", {"status": "pending"})
        assert first.version == 1
        second = await keyed_store.put("intents", "a", {"status": "confirmed"})
        assert second.version == 2
        record = await keyed_store.get("intents", "a")
        assert record.value == {"status": "confirmed"}
        assert record.version == 2

    async def test_insert_if_absent(self, keyed_store):
        assert await keyed_store.compare_and_swap("grants", "t1", 0, {"n": 1}) is True
        assert await keyed_store.compare_and_swap("grants", "t1", 0, {"n": 2}) is False
        assert (await keyed_store.get("grants", "t1")).value == {"n": 1}

    async def test_compare_and_swap_on_version(self, keyed_store):
        await keyed_store.put("intents", "a", {"status": "pending"})
        assert await keyed_store.compare_and_swap("intents", "a", 1, {"status": "confirmed"}) is True
        # Stale version loses
        assert await keyed_store.compare_and_swap("intents", "a", 1, {"status": "other"}) is False
        record = await keyed_store.get("intents", "a")
        assert record.value == {"status": "confirmed"}
        assert record.version == 2

    async def test_collections_are_separate(self, keyed_store):
        await keyed_store.put("intents", "x", {"kind": "intent"})
        await keyed_store.put("grants", "x", {"kind": "grant"})
        assert (await keyed_store.get("intents", "x")).value == {"kind": "intent"}
        assert [r.value for r in await keyed_store.list("grants")] == [{"kind": "grant"}]

    async def test_concurrent_cas_has_one_winner(self, keyed_store):
        await keyed_store.put("intents", "race", {"status": "pending"})
        results = await asyncio.gather(*[
            keyed_store.compare_and_swap("intents", "race", 1, {"status": "confirmed", "by": i})
            for i in range(5)
        ])
        assert results.count(True) == 1


async def test_memory_store_returns_copies():
    store = MemoryStore()
    await store.put("c", "k", {"nested": {"a": 1}})
    record = await store.get("c", "k")
    record.value["nested"]["a"] = 99
    assert (await store.get("c", "k")).value == {"nested": {"a": 1}}
