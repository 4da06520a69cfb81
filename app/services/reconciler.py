"""
Index reconciliation - create the candidate indexes that are missing.

For every candidate specification of a query:

1. Canonicalize to a field -> direction key.
2. Skip it if an existing index has a structurally equal key.
3. Fire autoIndexer.build; a hook abort vetoes this candidate only.
4. Create the index, invalidate the collection's cache (when configured)
   and fire autoIndexer.postBuild.
5. On failure fire autoIndexer.postBuild carrying the error, then either
   record it as ignored (ignore_create_errors) or as a failure raised to
   the caller. Vetoes are never ignored.

Candidates are attempted in extractor order. One candidate's failure does
not stop its siblings unless fail_fast is set.

Concurrency: the membership check and the create run under a lock keyed by
(collection, canonical key), and the check is repeated inside the lock, so
concurrent first-queries for the same missing index issue a single create.
Stores are still required to treat duplicate creates as no-ops, which covers
reset_on_build=False where the re-check can read a stale snapshot.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from app.config import IndexerOptions
from app.events.bus import EventType, HookBus
from core.exceptions import AutoIndexerError, HookVetoError, StoreCreateError, StoreError
from core.index_spec import IndexSpec, keys_equal
from infrastructure.cache.index_cache import IndexCache
from infrastructure.concurrency.keyed_lock import KeyedLock
from infrastructure.stores.base import DocumentStore

logger = logging.getLogger(__name__)


class ReconcileOutcome(Enum):
    """Overall outcome of one query's reconciliation."""

    NO_INDEX_NEEDED = "no_index_needed"  # extractor found nothing to do
    UP_TO_DATE = "up_to_date"  # every candidate already existed
    BUILT = "built"  # at least one index created, no failures
    PARTIAL = "partial"  # some created, some failed
    FAILED = "failed"  # nothing created, at least one failure
    IGNORED = "ignored"  # collection rejected by the model filter


@dataclass
class CandidateFailure:
    """A candidate whose build was vetoed or failed."""

    spec: IndexSpec
    error: AutoIndexerError

    @property
    def index_id(self) -> str:
        return self.spec.display_id()


@dataclass
class ReconcileResult:
    """What one query's reconciliation did."""

    collection: str
    outcome: ReconcileOutcome
    candidates: List[IndexSpec] = field(default_factory=list)
    built: List[IndexSpec] = field(default_factory=list)
    existing: List[IndexSpec] = field(default_factory=list)
    failures: List[CandidateFailure] = field(default_factory=list)
    ignored: List[CandidateFailure] = field(default_factory=list)

    @property
    def no_index_needed(self) -> bool:
        return self.outcome is ReconcileOutcome.NO_INDEX_NEEDED

    def to_dict(self) -> Dict[str, object]:
        return {
            "collection": self.collection,
            "outcome": self.outcome.value,
            "candidates": [spec.tokens() for spec in self.candidates],
            "built": [spec.display_id() for spec in self.built],
            "existing": [spec.display_id() for spec in self.existing],
            "failures": [
                {"index": failure.index_id, "error": str(failure.error)}
                for failure in self.failures
            ],
            "ignored": [
                {"index": failure.index_id, "error": str(failure.error)}
                for failure in self.ignored
            ],
        }


@dataclass
class CollectionHandle:
    """
    Per-collection state owned by the host's collection registration.

    The cache and the build locks live here, never in a global map.
    """

    name: str
    cache: IndexCache
    build_locks: KeyedLock = field(default_factory=KeyedLock)


class IndexReconciler:
    """
    Creates missing indexes for a collection's candidate specifications.
    """

    def __init__(self, store: DocumentStore, hooks: HookBus, options: IndexerOptions):
        self._store = store
        self._hooks = hooks
        self._options = options

    async def reconcile(
        self, handle: CollectionHandle, candidates: List[IndexSpec]
    ) -> ReconcileResult:
        """
        Create exactly the candidate indexes that are missing.

        Args:
            handle: Collection handle (cache + build locks).
            candidates: Candidate specifications in extractor order.

        Returns:
            ReconcileResult describing built, existing and failed candidates.

        Raises:
            StoreFetchError: If existing indexes cannot be read.
            StoreCreateError / HookVetoError: The first failure, once every
                candidate was attempted (immediately with fail_fast). Its
                details list every failed candidate id. With
                ignore_create_errors, create failures land in
                result.ignored instead; vetoes are still raised.
        """
        result = ReconcileResult(
            collection=handle.name,
            outcome=ReconcileOutcome.NO_INDEX_NEEDED,
            candidates=list(candidates),
        )
        if not candidates:
            return result

        # Surface fetch errors before any build is attempted
        await handle.cache.get_existing()

        for spec in candidates:
            error = await self._reconcile_one(handle, spec, result)
            if error is None:
                continue

            failure = CandidateFailure(spec=spec, error=error)
            if self._options.ignore_create_errors and not isinstance(error, HookVetoError):
                logger.warning(
                    f"Ignoring index build failure on {handle.name} for {spec.display_id()}: {error}",
                    extra={"collection": handle.name, "index_id": spec.display_id()},
                )
                result.ignored.append(failure)
                continue

            result.failures.append(failure)
            if self._options.fail_fast:
                break

        result.outcome = _outcome(result)

        if result.failures:
            first = result.failures[0].error
            first.details["failed_candidates"] = [f.index_id for f in result.failures]
            raise first

        return result

    async def _reconcile_one(
        self, handle: CollectionHandle, spec: IndexSpec, result: ReconcileResult
    ) -> Optional[AutoIndexerError]:
        """Check-and-create one candidate; returns the failure, if any."""
        key = spec.canonical_key()

        async with handle.build_locks.acquire(_lock_key(key)):
            existing = await handle.cache.get_existing()
            if any(keys_equal(index.key, key) for index in existing):
                logger.debug(f"Index {spec.display_id()} already exists on {handle.name}")
                result.existing.append(spec)
                return None

            veto = await self._hooks.fire(
                EventType.BUILD, handle.name, spec=spec, key=dict(key)
            )
            if veto.aborted:
                return HookVetoError(
                    "Index build vetoed by hook",
                    reason=veto.reason,
                    details={"collection": handle.name, "index": spec.display_id()},
                )

            try:
                await self._store.create_index(handle.name, key)
            except Exception as e:
                error = _as_create_error(e, handle.name, spec)
                await self._hooks.emit(
                    EventType.POST_BUILD, handle.name, spec=spec, key=dict(key), error=str(error)
                )
                return error

            if self._options.index_reset_on_build:
                handle.cache.invalidate()

        logger.info(
            f"Built index {spec.display_id()} on {handle.name}",
            extra={"collection": handle.name, "index_id": spec.display_id(), "operation": "build"},
        )
        result.built.append(spec)
        await self._hooks.emit(
            EventType.POST_BUILD, handle.name, spec=spec, key=dict(key), error=None
        )
        return None


def _lock_key(key: Dict[str, int]) -> Tuple[Tuple[str, int], ...]:
    # Order-insensitive, matching keys_equal()
    return tuple(sorted(key.items()))


def _as_create_error(error: Exception, collection: str, spec: IndexSpec) -> StoreCreateError:
    if isinstance(error, StoreCreateError):
        return error
    details = {"collection": collection, "index": spec.display_id()}
    if isinstance(error, StoreError):
        details.update(error.details)
    wrapped = StoreCreateError(f"Failed to create index: {error}", details=details)
    wrapped.__cause__ = error
    return wrapped


def _outcome(result: ReconcileResult) -> ReconcileOutcome:
    if result.failures or result.ignored:
        return ReconcileOutcome.PARTIAL if result.built else ReconcileOutcome.FAILED
    if result.built:
        return ReconcileOutcome.BUILT
    return ReconcileOutcome.UP_TO_DATE
