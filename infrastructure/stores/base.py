"""
Base interface for document stores.

This module defines the abstract collaborator the engine drives: a store
that can report a collection's indexes and their usage, create and drop
indexes, and describe declared field metadata. Query execution and
transport are the store's business, not the engine's.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping

from app.models.base import ExistingIndex, FieldMeta, IndexUsage


class DocumentStore(ABC):
    """
    Abstract base class for document store adapters.

    Every method is a coroutine: each call is a store round trip and an
    await point for the calling query.

    Contract:
    - create_index MUST be idempotent: creating an index whose key matches
      an existing one is a no-op, not an error.
    - drop_index SHOULD be a no-op when the index is already gone.
    """

    @abstractmethod
    async def list_collections(self) -> List[str]:
        """
        List collection identifiers known to the store.

        Returns:
            Collection names, in store order.
        """
        pass

    @abstractmethod
    async def list_indexes(self, collection: str) -> List[ExistingIndex]:
        """
        Fetch the collection's existing indexes.

        Raises:
            StoreFetchError: If the metadata cannot be read.
        """
        pass

    @abstractmethod
    async def create_index(self, collection: str, key: Mapping[str, int]) -> None:
        """
        Create an index with the given canonical key.

        Args:
            collection: Target collection.
            key: Ordered field -> direction mapping.

        Raises:
            StoreCreateError: If the build fails.
        """
        pass

    @abstractmethod
    async def drop_index(self, collection: str, key: Mapping[str, int]) -> None:
        """
        Drop the index with the given key.

        Raises:
            StoreDropError: If the removal fails for any reason other than
                the index being absent.
        """
        pass

    @abstractmethod
    async def index_stats(self, collection: str) -> List[IndexUsage]:
        """
        Fetch per-index usage counters.

        Raises:
            StoreFetchError: If the statistics cannot be read.
        """
        pass

    async def field_metadata(self, collection: str) -> Dict[str, FieldMeta]:
        """
        Declared metadata per field path.

        Optional capability: stores without schema information report
        nothing, which the engine treats as "no declared metadata".
        """
        return {}
