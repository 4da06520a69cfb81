"""
Auto-indexer service - the host-facing entry point.

The host registers its collections once and calls on_query() from its
query hook. Each call extracts the query shape, drops candidates over
container fields, lets hooks observe (or veto) the candidates and then
reconciles them against the collection's existing indexes.

The usage-based cleaner is exposed as clean_indexes() so a scheduler can
trigger it off the query path.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from app.config import CleanerOptions, IndexerOptions
from app.events.bus import EventType, HookBus
from app.services.index_cleaner import CleanupReport, IndexCleaner
from app.services.reconciler import (
    CollectionHandle,
    IndexReconciler,
    ReconcileOutcome,
    ReconcileResult,
)
from core.exceptions import CollectionFilteredError, HookVetoError
from core.query_shape import QueryShapeExtractor, SortClause
from infrastructure.cache.index_cache import IndexCache
from infrastructure.stores.base import DocumentStore

logger = logging.getLogger(__name__)


class AutoIndexer:
    """
    Observes query shapes and keeps the matching indexes in place.

    Example:
        ```python
        indexer = AutoIndexer(store, options=IndexerOptions(index_throttle=30))
        await indexer.register_all()

        # From the host's query hook:
        await indexer.on_query("users", {"name": "Joe", "role": "user"}, sort="-created")

        # From a nightly job:
        report = await indexer.clean_indexes(dry_run=True)
        ```
    """

    def __init__(
        self,
        store: DocumentStore,
        options: Optional[IndexerOptions] = None,
        cleaner_options: Optional[CleanerOptions] = None,
        hooks: Optional[HookBus] = None,
        clock=None,
    ):
        """
        Args:
            store: Document store collaborator.
            options: Query-path options (defaults if omitted).
            cleaner_options: Default options for clean_indexes().
            hooks: Hook bus shared with the host (a fresh one if omitted).
            clock: Optional monotonic clock handed to every IndexCache.
        """
        self.store = store
        self.options = options or IndexerOptions()
        self.cleaner_options = cleaner_options or CleanerOptions(model_filter=self.options.model_filter)
        self.hooks = hooks or HookBus()
        self._clock = clock
        self._extractor = QueryShapeExtractor(sort_indexes=self.options.sort_indexes)
        self._reconciler = IndexReconciler(store, self.hooks, self.options)
        self._handles: Dict[str, CollectionHandle] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, collection: str) -> CollectionHandle:
        """
        Register a collection and build its handle (cache + build locks).

        Registering twice returns the existing handle.

        Raises:
            CollectionFilteredError: If the model filter rejects the collection.
        """
        if collection in self._handles:
            return self._handles[collection]

        if not self.options.model_filter(collection):
            raise CollectionFilteredError(
                "Collection rejected by model filter", details={"collection": collection}
            )

        cache_kwargs = {"clock": self._clock} if self._clock is not None else {}
        handle = CollectionHandle(
            name=collection,
            cache=IndexCache(collection, self.store, throttle=self.options.index_throttle, **cache_kwargs),
        )
        self._handles[collection] = handle
        logger.info(f"Registered collection {collection} for auto-indexing")
        return handle

    async def register_all(self) -> List[CollectionHandle]:
        """Register every store collection accepted by the model filter."""
        handles = []
        for collection in await self.store.list_collections():
            if self.options.model_filter(collection):
                handles.append(self.register(collection))
        return handles

    def handle(self, collection: str) -> Optional[CollectionHandle]:
        return self._handles.get(collection)

    @property
    def collections(self) -> List[str]:
        return list(self._handles)

    # ------------------------------------------------------------------
    # Query path
    # ------------------------------------------------------------------

    async def on_query(
        self,
        collection: str,
        query_filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortClause] = None,
    ) -> ReconcileResult:
        """
        Query hook: make sure the indexes serving this query exist.

        Completes only after this query's reconciliation resolves.

        Args:
            collection: Collection the query targets.
            query_filter: The query's filter clause.
            sort: The query's sort clause.

        Returns:
            ReconcileResult; NO_INDEX_NEEDED when the query has no indexable
            fields, IGNORED when the collection is filtered out.

        Raises:
            HookVetoError: If an autoIndexer.query handler aborted.
            StoreFetchError: If existing indexes or field metadata could not be read.
            StoreCreateError / HookVetoError: Per IndexReconciler.reconcile().
        """
        handle = self._handles.get(collection)
        if handle is None:
            if not self.options.model_filter(collection):
                return ReconcileResult(collection=collection, outcome=ReconcileOutcome.IGNORED)
            handle = self.register(collection)

        candidates = self._extractor.extract(query_filter, sort)
        if not candidates:
            logger.debug(f"No index needed for query on {collection}")
            return ReconcileResult(collection=collection, outcome=ReconcileOutcome.NO_INDEX_NEEDED)

        if self.options.skip_container_fields:
            field_meta = await handle.cache.get_field_meta()
            candidates = self._extractor.drop_container_fields(candidates, field_meta)

        # Fired even when the container filter left nothing to build
        veto = await self.hooks.fire(EventType.QUERY, collection, candidates=[c.tokens() for c in candidates])
        if veto.aborted:
            raise HookVetoError(
                "Query indexing vetoed by hook",
                reason=veto.reason,
                details={"collection": collection},
            )

        if not candidates:
            return ReconcileResult(collection=collection, outcome=ReconcileOutcome.NO_INDEX_NEEDED)

        return await self._reconciler.reconcile(handle, candidates)

    # ------------------------------------------------------------------
    # Cleaner
    # ------------------------------------------------------------------

    async def clean_indexes(self, options: Optional[CleanerOptions] = None, **overrides) -> CleanupReport:
        """
        Run one usage-based cleaning pass.

        Args:
            options: Full option set; defaults to the indexer's cleaner options.
            **overrides: Individual option overrides (dry_run=True, hit_min=10, ...).
        """
        base = options or self.cleaner_options
        if overrides:
            values = {name: getattr(base, name) for name in CleanerOptions.model_fields}
            values.update(overrides)
            base = CleanerOptions(**values)
        cleaner = IndexCleaner(self.store, self.hooks, base)
        report = await cleaner.clean()

        # Dropped indexes make cached snapshots stale
        for collection in {candidate.collection for candidate in report.dropped}:
            handle = self._handles.get(collection)
            if handle is not None:
                handle.cache.invalidate()

        return report

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "collections": {name: handle.cache.get_statistics() for name, handle in self._handles.items()},
            "hooks": self.hooks.get_statistics(),
        }
