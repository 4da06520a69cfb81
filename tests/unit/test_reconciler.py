"""
Tests for app/services/reconciler.py

Coverage targets:
- Missing indexes created, existing ones skipped
- Idempotence across repeated reconciliation
- Cache invalidation on build
- Hook veto per candidate
- Create errors: surfaced, ignored, fail-fast
- Concurrent first-queries issue a single create
"""

import asyncio

import pytest

from app.config import IndexerOptions
from app.events.bus import EventType, HookResult
from app.services.reconciler import (
    CollectionHandle,
    IndexReconciler,
    ReconcileOutcome,
)
from core.exceptions import HookVetoError, StoreCreateError
from core.index_spec import IndexSpec
from infrastructure.cache.index_cache import IndexCache
from infrastructure.stores.memory import InMemoryStore


class FailingCreateStore(InMemoryStore):
    """Store that refuses to build indexes over the given fields."""

    def __init__(self, failing_fields, latency: float = 0.0):
        super().__init__(latency=latency)
        self.failing_fields = set(failing_fields)

    async def create_index(self, collection, key):
        if self.failing_fields & set(key):
            self.create_calls += 1
            raise RuntimeError("too many indexes")
        await super().create_index(collection, key)


def make_handle(store, clock, name="users"):
    return CollectionHandle(name=name, cache=IndexCache(name, store, throttle=60, clock=clock))


def specs(*token_lists):
    return [IndexSpec.from_tokens(tokens) for tokens in token_lists]


class TestReconcile:
    """Test the create / skip decision."""

    @pytest.mark.asyncio
    async def test_no_candidates(self, store, hooks, clock):
        reconciler = IndexReconciler(store, hooks, IndexerOptions())

        result = await reconciler.reconcile(make_handle(store, clock), [])

        assert result.outcome is ReconcileOutcome.NO_INDEX_NEEDED
        assert result.no_index_needed
        assert store.list_calls == 0

    @pytest.mark.asyncio
    async def test_creates_missing_indexes(self, store, hooks, clock, recorder):
        reconciler = IndexReconciler(store, hooks, IndexerOptions())

        result = await reconciler.reconcile(make_handle(store, clock), specs(["role"], ["-name"]))

        assert result.outcome is ReconcileOutcome.BUILT
        assert result.built == specs(["role"], ["-name"])
        assert store.has_index("users", {"role": 1})
        assert store.has_index("users", {"name": -1})

        builds = recorder.of_type(EventType.BUILD)
        assert [e.data["key"] for e in builds] == [{"role": 1}, {"name": -1}]
        post = recorder.of_type(EventType.POST_BUILD)
        assert [e.data["error"] for e in post] == [None, None]

    @pytest.mark.asyncio
    async def test_existing_index_skipped_without_events(self, store, hooks, clock, recorder):
        await store.create_index("users", {"role": 1, "name": 1})
        store.create_calls = 0
        reconciler = IndexReconciler(store, hooks, IndexerOptions())

        # Store reports the key in a different order: still the same index
        result = await reconciler.reconcile(make_handle(store, clock), specs(["name", "role"]))

        assert result.outcome is ReconcileOutcome.UP_TO_DATE
        assert result.existing == specs(["name", "role"])
        assert store.create_calls == 0
        assert recorder.of_type(EventType.BUILD) == []

    @pytest.mark.asyncio
    async def test_second_reconcile_creates_nothing(self, store, hooks, clock):
        reconciler = IndexReconciler(store, hooks, IndexerOptions())
        handle = make_handle(store, clock)

        await reconciler.reconcile(handle, specs(["name", "role"]))
        result = await reconciler.reconcile(handle, specs(["name", "role"]))

        assert store.create_calls == 1
        assert result.outcome is ReconcileOutcome.UP_TO_DATE

    @pytest.mark.asyncio
    async def test_cache_invalidated_on_build(self, store, hooks, clock):
        reconciler = IndexReconciler(store, hooks, IndexerOptions())
        handle = make_handle(store, clock)

        await reconciler.reconcile(handle, specs(["name"]))

        assert handle.cache.entry is None

    @pytest.mark.asyncio
    async def test_cache_kept_without_reset_on_build(self, store, hooks, clock):
        reconciler = IndexReconciler(store, hooks, IndexerOptions(index_reset_on_build=False))
        handle = make_handle(store, clock)

        await reconciler.reconcile(handle, specs(["name"]))

        assert handle.cache.entry is not None
        assert store.list_calls == 1


class TestHookVeto:
    """Test build vetoes."""

    @pytest.mark.asyncio
    async def test_veto_aborts_only_that_candidate(self, store, hooks, clock):
        def veto_role(event):
            if "role" in event.data["key"]:
                return HookResult.abort("role is low cardinality")

        hooks.subscribe(EventType.BUILD, veto_role)
        reconciler = IndexReconciler(store, hooks, IndexerOptions())

        with pytest.raises(HookVetoError) as exc_info:
            await reconciler.reconcile(make_handle(store, clock), specs(["role"], ["name"]))

        assert exc_info.value.reason == "role is low cardinality"
        assert exc_info.value.details["failed_candidates"] == ["role"]
        assert not store.has_index("users", {"role": 1})
        assert store.has_index("users", {"name": 1})

    @pytest.mark.asyncio
    async def test_veto_raised_even_with_ignore_create_errors(self, store, hooks, clock):
        """Ignoring create errors never hides a veto."""
        hooks.subscribe(EventType.BUILD, lambda event: HookResult.abort("no"))
        reconciler = IndexReconciler(store, hooks, IndexerOptions(ignore_create_errors=True))

        with pytest.raises(HookVetoError) as exc_info:
            await reconciler.reconcile(make_handle(store, clock), specs(["name"]))

        assert exc_info.value.reason == "no"
        assert exc_info.value.details["failed_candidates"] == ["name"]
        assert store.create_calls == 0


class TestCreateErrors:
    """Test build failure policies."""

    @pytest.mark.asyncio
    async def test_error_surfaced_after_siblings(self, hooks, clock, recorder):
        store = FailingCreateStore({"role"})
        reconciler = IndexReconciler(store, hooks, IndexerOptions())

        with pytest.raises(StoreCreateError) as exc_info:
            await reconciler.reconcile(make_handle(store, clock), specs(["role"], ["name"]))

        assert "too many indexes" in str(exc_info.value)
        assert store.has_index("users", {"name": 1})
        post = recorder.of_type(EventType.POST_BUILD)
        assert "too many indexes" in post[0].data["error"]
        assert post[1].data["error"] is None

    @pytest.mark.asyncio
    async def test_fail_fast_stops_remaining(self, hooks, clock):
        store = FailingCreateStore({"role"})
        reconciler = IndexReconciler(store, hooks, IndexerOptions(fail_fast=True))

        with pytest.raises(StoreCreateError):
            await reconciler.reconcile(make_handle(store, clock), specs(["role"], ["name"]))

        assert not store.has_index("users", {"name": 1})

    @pytest.mark.asyncio
    async def test_ignore_create_errors(self, hooks, clock, recorder):
        store = FailingCreateStore({"role"})
        reconciler = IndexReconciler(store, hooks, IndexerOptions(ignore_create_errors=True))

        result = await reconciler.reconcile(make_handle(store, clock), specs(["role"], ["name"]))

        assert result.outcome is ReconcileOutcome.PARTIAL
        assert result.built == specs(["name"])
        assert result.failures == []
        assert [f.index_id for f in result.ignored] == ["role"]
        assert result.to_dict()["ignored"][0]["index"] == "role"
        # Error still reported to observers
        assert "too many indexes" in recorder.of_type(EventType.POST_BUILD)[0].data["error"]

    @pytest.mark.asyncio
    async def test_ignored_errors_alone_report_failed(self, hooks, clock):
        store = FailingCreateStore({"name"})
        reconciler = IndexReconciler(store, hooks, IndexerOptions(ignore_create_errors=True))

        result = await reconciler.reconcile(make_handle(store, clock), specs(["name"]))

        assert result.outcome is ReconcileOutcome.FAILED
        assert result.built == []
        assert len(result.ignored) == 1
        assert not store.has_index("users", {"name": 1})


class TestConcurrentBuilds:
    """Two queries racing for the same missing index."""

    @pytest.mark.asyncio
    async def test_simultaneous_first_queries_create_once(self, hooks, clock):
        store = InMemoryStore(latency=0.01)
        store.add_collection("users")
        reconciler = IndexReconciler(store, hooks, IndexerOptions())
        handle = make_handle(store, clock)

        results = await asyncio.gather(
            reconciler.reconcile(handle, specs(["name", "role"])),
            reconciler.reconcile(handle, specs(["name", "role"])),
        )

        assert store.create_calls == 1
        assert sorted(r.outcome.value for r in results) == ["built", "up_to_date"]

    @pytest.mark.asyncio
    async def test_idempotent_store_absorbs_stale_cache(self, hooks, clock):
        """Without reset-on-build the re-check reads a stale snapshot; the store dedups."""
        store = InMemoryStore(latency=0.01)
        store.add_collection("users")
        reconciler = IndexReconciler(store, hooks, IndexerOptions(index_reset_on_build=False))
        handle = make_handle(store, clock)

        await asyncio.gather(
            reconciler.reconcile(handle, specs(["name"])),
            reconciler.reconcile(handle, specs(["name"])),
        )

        indexes = await store.list_indexes("users")
        assert [i.key for i in indexes].count({"name": 1}) == 1
