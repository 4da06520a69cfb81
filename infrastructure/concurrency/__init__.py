"""Concurrency utilities for async index management."""

from infrastructure.concurrency.keyed_lock import KeyedLock

__all__ = ["KeyedLock"]
