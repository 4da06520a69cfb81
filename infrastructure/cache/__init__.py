"""Per-collection caches."""

from infrastructure.cache.index_cache import CacheEntry, IndexCache

__all__ = ["CacheEntry", "IndexCache"]
