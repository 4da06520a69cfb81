"""Service layer for the auto-indexer."""

from app.services.auto_indexer import AutoIndexer
from app.services.index_cleaner import CleanupReport, IndexCleaner
from app.services.reconciler import (
    CollectionHandle,
    IndexReconciler,
    ReconcileOutcome,
    ReconcileResult,
)

__all__ = [
    "AutoIndexer",
    "CleanupReport",
    "CollectionHandle",
    "IndexCleaner",
    "IndexReconciler",
    "ReconcileOutcome",
    "ReconcileResult",
]
