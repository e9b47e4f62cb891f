"""Per-key lock pools.

Used wherever mutations must be serialised per entity (one drug, one store
record, one ledger file) without a global lock.  Locks are created on first
use and kept for the life of the process; the pool dict itself is guarded
by a separate mutex.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterable, Iterator
from contextlib import contextmanager


class KeyedLocks:
    """Pool of ``threading.RLock`` objects keyed by an arbitrary hashable."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, threading.RLock] = {}
        self._locks_mutex = threading.Lock()

    def get(self, key: Hashable) -> threading.RLock:
        """Return the lock for ``key``, creating it on first use."""
        with self._locks_mutex:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """Acquire the locks for ``keys`` in a stable order.

        Duplicate keys are acquired once.  Sorting on ``repr`` gives every
        caller the same acquisition order, so two callers locking
        overlapping key sets cannot deadlock.
        """
        ordered = _ordered(keys)
        locks = [self.get(key) for key in ordered]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()


def _ordered(keys: Iterable[Hashable]) -> list[Hashable]:
    return sorted(set(keys), key=repr)
