"""
Usage-based index cleaner.

A separately triggered pass (cron, admin endpoint, low-load window) that
retires indexes the store reports as rarely used:

1. Fetch usage statistics for every collection accepted by model_filter.
2. Build one flat list of cleanup candidates with display ids.
3. Attach declared field metadata when ignore_manual_spec is enabled.
4. Fire autoIndexer.consider with the full list (abortable audit point).
5. Filter: primary key, manually declared, caller index_filter, hit_min.
6. Emit autoIndexer.clean per survivor and drop it unless dry_run.

Indexes without any declared metadata stay eligible. That default prefers
removing orphaned indexes over keeping unidentified ones, so it is logged
at WARNING for every such index.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from app.config import CleanerOptions
from app.events.bus import EventType, HookBus
from app.models.base import CleanupCandidate, FieldMeta
from core.exceptions import HookVetoError, StoreDropError, StoreError, StoreFetchError
from infrastructure.stores.base import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class DropFailure:
    candidate: CleanupCandidate
    error: StoreDropError


@dataclass
class CleanupReport:
    """
    Result of one cleaning pass.

    Attributes:
        considered: Every index found, before filtering
        candidates: Indexes that passed every filter
        dropped: Candidates actually dropped (empty on dry runs)
        errors: Swallowed drop failures
        dry_run: Whether the pass was a dry run
    """

    considered: List[CleanupCandidate] = field(default_factory=list)
    candidates: List[CleanupCandidate] = field(default_factory=list)
    dropped: List[CleanupCandidate] = field(default_factory=list)
    errors: List[DropFailure] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "considered": [c.id for c in self.considered],
            "candidates": [c.model_dump(mode="json") for c in self.candidates],
            "dropped": [c.id for c in self.dropped],
            "errors": [{"index": f.candidate.id, "error": str(f.error)} for f in self.errors],
        }


class IndexCleaner:
    """
    Drops indexes whose hit count is below the configured minimum.

    Dry runs report exactly what would be dropped and never call the store's
    drop operation, whatever happens on the error paths.
    """

    def __init__(self, store: DocumentStore, hooks: HookBus, options: CleanerOptions):
        self._store = store
        self._hooks = hooks
        self._options = options

    async def clean(self) -> CleanupReport:
        """
        Run one cleaning pass.

        Returns:
            CleanupReport for the pass.

        Raises:
            StoreFetchError: If statistics or metadata could not be read
                (nothing is dropped).
            HookVetoError: If an autoIndexer.consider handler aborted.
            StoreDropError: On a drop failure when ignore_errors is off.
        """
        options = self._options
        report = CleanupReport(dry_run=options.dry_run)

        collections = [c for c in await self._store.list_collections() if options.model_filter(c)]
        per_collection = await asyncio.gather(*(self._collect(c) for c in collections))
        report.considered = [candidate for candidates in per_collection for candidate in candidates]

        if options.ignore_manual_spec:
            await self._attach_meta(report.considered)

        veto = await self._hooks.fire(EventType.CONSIDER, None, indexes=list(report.considered))
        if veto.aborted:
            raise HookVetoError("Index cleanup vetoed by hook", reason=veto.reason)

        report.candidates = [c for c in report.considered if self._eligible(c)]
        logger.info(
            f"Index cleanup: {len(report.considered)} considered, "
            f"{len(report.candidates)} below {options.hit_min} hits"
            + (" (dry run)" if options.dry_run else "")
        )

        for candidate in report.candidates:
            await self._hooks.emit(EventType.CLEAN, candidate.collection, index=candidate)
            if options.dry_run:
                continue

            try:
                await self._store.drop_index(candidate.collection, candidate.key)
                error = None
            except StoreDropError as e:
                error = e
            except Exception as e:
                error = StoreDropError(
                    f"Failed to drop index: {e}",
                    details={"collection": candidate.collection, "index": candidate.id},
                )
                error.__cause__ = e

            if error is not None:
                if not options.ignore_errors:
                    raise error
                logger.warning(
                    f"Ignoring failure dropping {candidate.id}: {error}",
                    extra={"collection": candidate.collection, "index_id": candidate.id},
                )
                report.errors.append(DropFailure(candidate=candidate, error=error))
                continue

            logger.info(
                f"Dropped index {candidate.id} ({candidate.hits} hits)",
                extra={"collection": candidate.collection, "index_id": candidate.id, "operation": "clean"},
            )
            report.dropped.append(candidate)

        return report

    async def _collect(self, collection: str) -> List[CleanupCandidate]:
        try:
            usage = await self._store.index_stats(collection)
        except StoreError:
            raise
        except Exception as e:
            raise StoreFetchError(
                "Failed to fetch index statistics",
                details={"collection": collection, "error": str(e)},
            ) from e
        return [CleanupCandidate.from_usage(collection, item) for item in usage]

    async def _attach_meta(self, candidates: List[CleanupCandidate]) -> None:
        """Glue declared field metadata onto each candidate, by first key field."""
        collections = list(dict.fromkeys(c.collection for c in candidates))
        metas = await asyncio.gather(*(self._field_metadata(c) for c in collections))
        meta_by_collection: Dict[str, Dict[str, FieldMeta]] = dict(zip(collections, metas))

        for candidate in candidates:
            if candidate.is_primary:
                continue
            meta = meta_by_collection.get(candidate.collection, {}).get(candidate.path)
            if meta is None:
                logger.warning(
                    f"Cannot find path spec for {candidate.path} in {candidate.collection} "
                    f"when cleaning indexes, assuming {candidate.id} can be removed",
                    extra={"collection": candidate.collection, "index_id": candidate.id},
                )
                continue
            candidate.meta = meta
            candidate.manually_declared = meta.index

    async def _field_metadata(self, collection: str) -> Dict[str, FieldMeta]:
        try:
            return await self._store.field_metadata(collection)
        except StoreError:
            raise
        except Exception as e:
            raise StoreFetchError(
                "Failed to fetch field metadata",
                details={"collection": collection, "error": str(e)},
            ) from e

    def _eligible(self, candidate: CleanupCandidate) -> bool:
        options = self._options

        if candidate.is_primary:
            return False

        if options.ignore_manual_spec and candidate.manually_declared:
            logger.debug(f"Filtering out manually indexed path {candidate.id}")
            return False

        if not all(predicate(candidate) for predicate in options.index_filters):
            return False

        return candidate.hits < options.hit_min
