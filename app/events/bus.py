"""
Hook bus for the index lifecycle.

The host observes - and for some steps vetoes - each stage of the engine:

    autoIndexer.query      candidates extracted for a query (abortable)
    autoIndexer.build      an index is about to be created (abortable)
    autoIndexer.postBuild  an index build finished, success or error
    autoIndexer.consider   cleanup candidates collected (abortable)
    autoIndexer.clean      an index is about to be dropped (notification only)

Handlers are kept in an ordered list per event type and invoked one after
another in registration order. A handler returns None or HookResult.proceed()
to continue, or HookResult.abort(reason) to stop the chain. Handlers may be
plain functions or coroutines.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Lifecycle events fired by the engine."""

    QUERY = "autoIndexer.query"
    BUILD = "autoIndexer.build"
    POST_BUILD = "autoIndexer.postBuild"
    CONSIDER = "autoIndexer.consider"
    CLEAN = "autoIndexer.clean"


@dataclass
class Event:
    """
    Event data structure handed to every handler.

    Attributes:
        type: Type of event
        collection: Collection the event concerns (None for cross-collection events)
        data: Event-specific payload
        timestamp: When the event occurred
    """

    type: EventType
    collection: Optional[str]
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class HookResult:
    """Outcome of a handler or of a whole handler chain."""

    aborted: bool = False
    reason: str = ""

    @classmethod
    def proceed(cls) -> "HookResult":
        return cls()

    @classmethod
    def abort(cls, reason: str) -> "HookResult":
        return cls(aborted=True, reason=reason)


HookHandler = Callable[[Event], Union[None, HookResult, Awaitable[Optional[HookResult]]]]


class HookBus:
    """
    Ordered, in-process hook registry.

    Unlike a queued pub/sub bus, delivery is synchronous with the step that
    fired the event: the engine awaits the handler chain before continuing,
    which is what gives abortable events their veto power.

    Thread-Safety: Uses asyncio, safe for async operations in the same event loop.
    """

    def __init__(self):
        """Initialize the hook bus."""
        self._handlers: Dict[EventType, List[HookHandler]] = {}

        # Hook statistics
        self._total_fired = 0
        self._total_aborted = 0
        self._total_errors = 0

    def subscribe(self, event_type: EventType, handler: HookHandler) -> HookHandler:
        """
        Register a handler for an event type.

        Handlers run in registration order. Returns the handler so this can
        be used as a decorator helper.

        Example:
            ```python
            def no_builds_on_audit(event: Event):
                if event.collection == "audit":
                    return HookResult.abort("audit log is append-only")

            hook_bus.subscribe(EventType.BUILD, no_builds_on_audit)
            ```
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed to {event_type.value}: {_handler_name(handler)}")
        return handler

    def unsubscribe(self, event_type: EventType, handler: HookHandler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            logger.debug(f"Unsubscribed from {event_type.value}: {_handler_name(handler)}")

    def handlers(self, event_type: EventType) -> List[HookHandler]:
        return list(self._handlers.get(event_type, []))

    async def fire(
        self,
        event_type: EventType,
        collection: Optional[str] = None,
        **data: Any,
    ) -> HookResult:
        """
        Run the handler chain for an event and return its outcome.

        The chain stops at the first handler that aborts. A handler that
        raises is treated as an abort carrying the exception text.

        Returns:
            HookResult.proceed() if every handler continued.
        """
        event = Event(type=event_type, collection=collection, data=data)
        self._total_fired += 1

        for handler in self.handlers(event_type):
            try:
                result = await _call(handler, event)
            except Exception as e:
                self._total_errors += 1
                logger.error(
                    f"Hook {_handler_name(handler)} failed on {event_type.value}: {e}",
                    exc_info=True,
                )
                result = HookResult.abort(str(e))

            if isinstance(result, HookResult) and result.aborted:
                self._total_aborted += 1
                logger.info(
                    f"{event_type.value} aborted by {_handler_name(handler)}: {result.reason}"
                )
                return result

        return HookResult.proceed()

    async def emit(
        self,
        event_type: EventType,
        collection: Optional[str] = None,
        **data: Any,
    ) -> None:
        """
        Fire-and-forget notification.

        Every handler runs; aborts and handler errors are logged and ignored.
        """
        event = Event(type=event_type, collection=collection, data=data)
        self._total_fired += 1

        for handler in self.handlers(event_type):
            try:
                await _call(handler, event)
            except Exception as e:
                self._total_errors += 1
                logger.error(
                    f"Hook {_handler_name(handler)} failed on {event_type.value}: {e}",
                    exc_info=True,
                )

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get hook bus statistics.

        Returns:
            Dictionary with statistics:
            - total_fired: Events fired (abortable or not)
            - total_aborted: Chains stopped by a handler
            - total_errors: Handlers that raised
            - subscriber_count: Registered handlers across all events
        """
        return {
            "total_fired": self._total_fired,
            "total_aborted": self._total_aborted,
            "total_errors": self._total_errors,
            "subscriber_count": sum(len(h) for h in self._handlers.values()),
        }


async def _call(handler: HookHandler, event: Event) -> Optional[HookResult]:
    result = handler(event)
    if inspect.isawaitable(result):
        result = await result
    return result


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))
