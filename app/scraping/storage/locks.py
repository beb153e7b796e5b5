"""
Per-key lock pool used to serialize writes to the same natural key.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager


class KeyedLockPool:
    """
    Hands out one lock per key, dropping locks nobody holds or waits on.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._refcounts: dict[str, int] = {}

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        """
        Acquire the locks for all keys, in sorted order to avoid deadlock.
        """

        ordered = sorted(set(keys))
        locks = [self._checkout(key) for key in ordered]
        acquired: list[threading.Lock] = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in ordered:
                self._checkin(key)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._refcounts[key] = 0
            self._refcounts[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            remaining = self._refcounts[key] - 1
            if remaining <= 0:
                del self._refcounts[key]
                del self._locks[key]
            else:
                self._refcounts[key] = remaining
