"""Document store adapters."""

from infrastructure.stores.base import DocumentStore
from infrastructure.stores.memory import InMemoryStore

__all__ = [
    "DocumentStore",
    "InMemoryStore",
]
