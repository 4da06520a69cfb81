"""
Keyed async lock.

This module provides a lock that serializes coroutines per key while
letting different keys proceed concurrently. The index path uses one per
collection, keyed by canonical index key, so two queries racing to build
the same missing index take turns instead of both calling the store.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Optional


class KeyedLock:
    """
    Mapping of key -> asyncio.Lock, created on demand.

    Locks are reference counted and removed once no coroutine holds or
    waits on them, so the mapping only grows with in-flight keys.

    Usage:
        lock = KeyedLock()

        async with lock.acquire(("name", 1)):
            # Only one coroutine per key gets here at a time
            ...
    """

    def __init__(self):
        """Initialize the keyed lock."""
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable, timeout: Optional[float] = None):
        """
        Context manager for holding the lock of one key.

        Args:
            key: Any hashable key.
            timeout: Optional timeout in seconds.

        Raises:
            TimeoutError: If timeout is specified and exceeded.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1

        try:
            if timeout is None:
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout)
                except asyncio.TimeoutError:
                    raise TimeoutError(
                        f"Failed to acquire lock for {key!r} within {timeout} seconds"
                    )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    def __repr__(self) -> str:
        return f"KeyedLock(keys={len(self._locks)})"
