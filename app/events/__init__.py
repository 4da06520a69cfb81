"""
Lifecycle hooks for the auto-indexer.

This module provides:
- Hook bus with ordered, abortable handler chains
- Event types and payloads
"""

from app.events.bus import Event, EventType, HookBus, HookResult

__all__ = ["Event", "EventType", "HookBus", "HookResult"]
