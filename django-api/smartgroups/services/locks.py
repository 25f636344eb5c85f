"""Per-key mutual exclusion.

Each key (an offering, an actor) gets its own re-entrant lock, so work on
one key never waits for work on another. The registry guard is held only
while looking a lock up, never for the caller's critical section.
"""

import threading
from typing import Hashable


class LockTimeout(Exception):
    """Raised when a keyed lock is not acquired within the allowed wait."""

    def __init__(self, key: Hashable, timeout: float | None) -> None:
        super().__init__(f"Timed out after {timeout}s waiting for lock on {key}")
        self.key = key
        self.timeout = timeout


class HeldLock:
    """Context manager acquiring one keyed lock with an optional bounded wait."""

    def __init__(self, key: Hashable, lock: threading.RLock, timeout: float | None) -> None:
        self._key = key
        self._lock = lock
        self._timeout = timeout

    def __enter__(self) -> "HeldLock":
        acquired = self._lock.acquire(timeout=-1 if self._timeout is None else self._timeout)
        if not acquired:
            raise LockTimeout(self._key, self._timeout)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._lock.release()
        return False


class KeyedLocks:
    """Registry of re-entrant locks, one per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def hold(self, key: Hashable, timeout: float | None = None) -> HeldLock:
        return HeldLock(key, self.lock_for(key), timeout)
