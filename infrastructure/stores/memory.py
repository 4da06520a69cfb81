"""
In-memory document store.

Keeps index keys, hit counters and declared field metadata per collection
in plain dicts. Used as the reference store in tests and for running the
engine without a database. Honors the DocumentStore contract: duplicate
creates and drops of absent indexes are no-ops.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from app.models.base import ExistingIndex, FieldMeta, IndexUsage
from core.index_spec import PRIMARY_KEY_FIELD, keys_equal, normalize_key
from infrastructure.stores.base import DocumentStore

logger = logging.getLogger(__name__)


class _StoredIndex:
    __slots__ = ("name", "key", "ops", "since")

    def __init__(self, key: Dict[str, int], since: datetime):
        self.key = key
        self.name = "_".join(f"{path}_{direction}" for path, direction in key.items())
        self.ops = 0
        self.since = since


class InMemoryStore(DocumentStore):
    """
    Dict-backed store.

    Every collection starts with the primary-key index, like a real store.
    Call counters (create_calls, drop_calls, list_calls, stats_calls) let
    callers observe how many round trips the engine made.

    Thread-Safety: Uses an asyncio.Lock around mutations; safe within one
    event loop.
    """

    def __init__(self, latency: float = 0.0):
        """
        Args:
            latency: Seconds to sleep on every call, to widen race windows.
        """
        self._indexes: Dict[str, List[_StoredIndex]] = {}
        self._field_meta: Dict[str, Dict[str, FieldMeta]] = {}
        self._lock = asyncio.Lock()
        self._latency = latency

        self.create_calls = 0
        self.drop_calls = 0
        self.list_calls = 0
        self.stats_calls = 0

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def add_collection(self, collection: str) -> None:
        if collection not in self._indexes:
            self._indexes[collection] = [_StoredIndex({PRIMARY_KEY_FIELD: 1}, datetime.utcnow())]

    def declare_fields(self, collection: str, meta: Mapping[str, object]) -> None:
        """Register schema metadata, given as FieldMeta or plain dicts."""
        self.add_collection(collection)
        self._field_meta[collection] = {
            path: value if isinstance(value, FieldMeta) else FieldMeta(**value)
            for path, value in meta.items()
        }

    def record_hits(self, collection: str, key: Mapping[str, int], hits: int) -> None:
        """Bump the usage counter of an existing index."""
        stored = self._find(collection, key)
        if stored is None:
            raise KeyError(f"No index {dict(key)} on {collection}")
        stored.ops += hits

    def has_index(self, collection: str, key: Mapping[str, int]) -> bool:
        return self._find(collection, key) is not None

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def list_collections(self) -> List[str]:
        await self._pause()
        return list(self._indexes)

    async def list_indexes(self, collection: str) -> List[ExistingIndex]:
        await self._pause()
        self.list_calls += 1
        return [
            ExistingIndex(name=stored.name, key=dict(stored.key))
            for stored in self._indexes.get(collection, [])
        ]

    async def create_index(self, collection: str, key: Mapping[str, int]) -> None:
        await self._pause()
        async with self._lock:
            self.create_calls += 1
            self.add_collection(collection)
            if self._find(collection, key) is not None:
                logger.debug(f"Index {dict(key)} already exists on {collection}")
                return
            self._indexes[collection].append(_StoredIndex(normalize_key(key), datetime.utcnow()))

    async def drop_index(self, collection: str, key: Mapping[str, int]) -> None:
        await self._pause()
        async with self._lock:
            self.drop_calls += 1
            stored = self._find(collection, key)
            if stored is None:
                return
            self._indexes[collection].remove(stored)

    async def index_stats(self, collection: str) -> List[IndexUsage]:
        await self._pause()
        self.stats_calls += 1
        return [
            IndexUsage(name=stored.name, key=dict(stored.key), ops=stored.ops, since=stored.since)
            for stored in self._indexes.get(collection, [])
        ]

    async def field_metadata(self, collection: str) -> Dict[str, FieldMeta]:
        await self._pause()
        return dict(self._field_meta.get(collection, {}))

    # ------------------------------------------------------------------

    def _find(self, collection: str, key: Mapping[str, int]) -> Optional[_StoredIndex]:
        for stored in self._indexes.get(collection, []):
            if keys_equal(stored.key, key):
                return stored
        return None

    async def _pause(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)
        else:
            await asyncio.sleep(0)
