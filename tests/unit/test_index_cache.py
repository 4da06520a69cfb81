"""
Tests for infrastructure/cache/index_cache.py

Coverage targets:
- Fresh entries served without store access
- Stale entries re-fetched after the throttle window
- Fetch failures surface and do not poison the cache
- Invalidation
- Single-flight fetch under concurrent first access
- Field metadata throttled on the same window
"""

import asyncio

import pytest

from core.exceptions import StoreFetchError
from infrastructure.cache.index_cache import IndexCache
from infrastructure.stores.memory import InMemoryStore


class FailingListStore(InMemoryStore):
    """Store whose list_indexes fails while `failing` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    async def list_indexes(self, collection):
        if self.failing:
            self.list_calls += 1
            raise ConnectionError("store unreachable")
        return await super().list_indexes(collection)


class TestCacheFreshness:
    """Test the throttle window."""

    @pytest.mark.asyncio
    async def test_first_lookup_fetches(self, store, clock):
        cache = IndexCache("users", store, throttle=60, clock=clock)

        indexes = await cache.get_existing()

        assert [i.key for i in indexes] == [{"_id": 1}]
        assert store.list_calls == 1

    @pytest.mark.asyncio
    async def test_fresh_lookup_skips_store(self, store, clock):
        cache = IndexCache("users", store, throttle=60, clock=clock)
        await cache.get_existing()

        clock.advance(59.9)
        await cache.get_existing()

        assert store.list_calls == 1
        assert cache.get_statistics()["hits"] == 1

    @pytest.mark.asyncio
    async def test_stale_lookup_refetches(self, store, clock):
        cache = IndexCache("users", store, throttle=60, clock=clock)
        await cache.get_existing()

        clock.advance(60)
        await cache.get_existing()

        assert store.list_calls == 2

    @pytest.mark.asyncio
    async def test_snapshot_not_updated_while_fresh(self, store, clock):
        cache = IndexCache("users", store, throttle=60, clock=clock)
        await cache.get_existing()

        await store.create_index("users", {"name": 1})
        indexes = await cache.get_existing()

        assert {"name": 1} not in [i.key for i in indexes]

    @pytest.mark.asyncio
    async def test_invalidate_forces_fetch(self, store, clock):
        cache = IndexCache("users", store, throttle=60, clock=clock)
        await cache.get_existing()
        await store.create_index("users", {"name": 1})

        cache.invalidate()
        indexes = await cache.get_existing()

        assert {"name": 1} in [i.key for i in indexes]
        assert store.list_calls == 2
        assert cache.get_statistics()["invalidations"] == 1


class TestCacheErrors:
    """Test fetch failure handling."""

    @pytest.mark.asyncio
    async def test_fetch_error_surfaces(self, clock):
        store = FailingListStore()
        store.failing = True
        cache = IndexCache("users", store, clock=clock)

        with pytest.raises(StoreFetchError):
            await cache.get_existing()

        assert cache.entry is None

    @pytest.mark.asyncio
    async def test_fetch_error_keeps_previous_entry(self, clock):
        store = FailingListStore()
        store.add_collection("users")
        cache = IndexCache("users", store, throttle=10, clock=clock)
        await cache.get_existing()
        previous = cache.entry

        clock.advance(11)
        store.failing = True
        with pytest.raises(StoreFetchError):
            await cache.get_existing()

        assert cache.entry is previous


class TestCacheConcurrency:
    """Test single-flight refresh."""

    @pytest.mark.asyncio
    async def test_concurrent_first_access_fetches_once(self, clock):
        store = InMemoryStore(latency=0.01)
        store.add_collection("users")
        cache = IndexCache("users", store, clock=clock)

        results = await asyncio.gather(*(cache.get_existing() for _ in range(5)))

        assert store.list_calls == 1
        assert all(len(r) == 1 for r in results)


class MetadataCountingStore(InMemoryStore):
    """Store that counts field metadata reads and can fail them."""

    def __init__(self):
        super().__init__()
        self.meta_calls = 0
        self.failing = False

    async def field_metadata(self, collection):
        self.meta_calls += 1
        if self.failing:
            raise ConnectionError("store unreachable")
        return await super().field_metadata(collection)


class TestFieldMetadata:
    """Test the field metadata entry."""

    @pytest.mark.asyncio
    async def test_served_within_throttle(self, clock):
        store = MetadataCountingStore()
        store.declare_fields("users", {"tags": {"type": "array"}})
        cache = IndexCache("users", store, throttle=60, clock=clock)

        first = await cache.get_field_meta()
        await cache.get_field_meta()

        assert first["tags"].type == "array"
        assert store.meta_calls == 1
        assert cache.get_statistics()["meta_fetches"] == 1

        clock.advance(61)
        await cache.get_field_meta()
        assert store.meta_calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_keeps_metadata(self, clock):
        store = MetadataCountingStore()
        cache = IndexCache("users", store, throttle=60, clock=clock)
        await cache.get_field_meta()

        cache.invalidate()
        await cache.get_field_meta()

        assert store.meta_calls == 1

    @pytest.mark.asyncio
    async def test_fetch_error_wrapped(self, clock):
        store = MetadataCountingStore()
        store.failing = True
        cache = IndexCache("users", store, clock=clock)

        with pytest.raises(StoreFetchError) as exc_info:
            await cache.get_field_meta()

        assert exc_info.value.details["error"] == "store unreachable"

        # Nothing cached; the next lookup retries
        store.failing = False
        assert await cache.get_field_meta() == {}
        assert store.meta_calls == 2
