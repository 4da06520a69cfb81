"""
Throttled cache of one collection's existing indexes and field metadata.

Each collection handle owns exactly one IndexCache; nothing is shared
across collections and nothing is looked up through global state. An
entry is fresh while `now - created < throttle`; a stale or missing entry
is re-fetched from the store before any reconciliation decision.

Field metadata is kept in a second entry on the same throttle window, so
the container-field check does not cost a store round trip per query.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.models.base import ExistingIndex, FieldMeta
from core.exceptions import StoreError, StoreFetchError
from infrastructure.stores.base import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of a collection's indexes and when it was taken."""

    created: float
    indexes: Tuple[ExistingIndex, ...]

    def is_fresh(self, now: float, throttle: float) -> bool:
        return now - self.created < throttle


class IndexCache:
    """
    Per-collection existing-index cache with a freshness window.

    The fetch-or-refresh step is single-flight: concurrent callers that find
    the entry stale wait on one asyncio.Lock, and only the first performs
    the store round trip.
    """

    def __init__(
        self,
        collection: str,
        store: DocumentStore,
        throttle: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            collection: Collection this cache belongs to.
            store: Store to fetch from.
            throttle: Freshness window in seconds.
            clock: Monotonic time source, injectable for tests.
        """
        self.collection = collection
        self.throttle = throttle
        self._store = store
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._lock = asyncio.Lock()
        self._meta: Optional[Tuple[float, Dict[str, FieldMeta]]] = None
        self._meta_lock = asyncio.Lock()

        self._fetches = 0
        self._meta_fetches = 0
        self._hits = 0
        self._invalidations = 0

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    def is_fresh(self) -> bool:
        return self._entry is not None and self._entry.is_fresh(self._clock(), self.throttle)

    async def get_existing(self) -> List[ExistingIndex]:
        """
        Return the collection's existing indexes.

        Served from the cached snapshot while fresh; otherwise fetched from
        the store and cached with the current timestamp.

        Raises:
            StoreFetchError: If the store fetch fails. The previous entry (if
                any) is left as it was.
        """
        if self.is_fresh():
            self._hits += 1
            return list(self._entry.indexes)

        async with self._lock:
            # Another coroutine may have refreshed while we waited
            if self.is_fresh():
                self._hits += 1
                return list(self._entry.indexes)

            try:
                indexes = await self._store.list_indexes(self.collection)
            except StoreError:
                raise
            except Exception as e:
                raise StoreFetchError(
                    "Failed to fetch existing indexes",
                    details={"collection": self.collection, "error": str(e)},
                ) from e

            self._fetches += 1
            self._entry = CacheEntry(created=self._clock(), indexes=tuple(indexes))
            logger.debug(f"Fetched {len(indexes)} indexes for {self.collection}")
            return list(indexes)

    async def get_field_meta(self) -> Dict[str, FieldMeta]:
        """
        Return the collection's declared field metadata, throttled like
        get_existing().

        Raises:
            StoreFetchError: If the store fetch fails.
        """
        if self._meta is not None and self._clock() - self._meta[0] < self.throttle:
            return dict(self._meta[1])

        async with self._meta_lock:
            if self._meta is not None and self._clock() - self._meta[0] < self.throttle:
                return dict(self._meta[1])

            try:
                meta = await self._store.field_metadata(self.collection)
            except StoreError:
                raise
            except Exception as e:
                raise StoreFetchError(
                    "Failed to fetch field metadata",
                    details={"collection": self.collection, "error": str(e)},
                ) from e

            self._meta_fetches += 1
            self._meta = (self._clock(), dict(meta))
            return dict(meta)

    def invalidate(self) -> None:
        """Drop the cached index snapshot; the next lookup re-fetches. Field metadata is kept."""
        if self._entry is not None:
            self._invalidations += 1
        self._entry = None

    def get_statistics(self) -> Dict[str, Any]:
        entry = self._entry
        return {
            "collection": self.collection,
            "cached": entry is not None,
            "fresh": self.is_fresh(),
            "index_count": len(entry.indexes) if entry else 0,
            "fetches": self._fetches,
            "hits": self._hits,
            "invalidations": self._invalidations,
            "meta_fetches": self._meta_fetches,
        }
