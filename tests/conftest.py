"""
Pytest configuration and shared fixtures.
"""

from typing import List

import pytest

from app.config import CleanerOptions, IndexerOptions
from app.events.bus import Event, EventType, HookBus
from app.services.auto_indexer import AutoIndexer
from infrastructure.stores.memory import InMemoryStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """Hook handler that records every event it sees."""

    def __init__(self):
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[Event]:
        return [e for e in self.events if e.type is event_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    """Store with a users collection and a little declared schema."""
    store = InMemoryStore()
    store.add_collection("users")
    store.declare_fields(
        "users",
        {
            "name": {"type": "string"},
            "role": {"type": "string"},
            "email": {"type": "string", "index": True},
            "tags": {"type": "array"},
            "address": {"type": "object"},
        },
    )
    return store


@pytest.fixture
def hooks() -> HookBus:
    return HookBus()


@pytest.fixture
def recorder(hooks: HookBus) -> EventRecorder:
    """Recorder subscribed to every lifecycle event."""
    recorder = EventRecorder()
    for event_type in EventType:
        hooks.subscribe(event_type, recorder)
    return recorder


@pytest.fixture
def indexer_options() -> IndexerOptions:
    return IndexerOptions()


@pytest.fixture
def indexer(store: InMemoryStore, hooks: HookBus, clock: FakeClock, indexer_options: IndexerOptions) -> AutoIndexer:
    return AutoIndexer(
        store,
        options=indexer_options,
        cleaner_options=CleanerOptions(),
        hooks=hooks,
        clock=clock,
    )
