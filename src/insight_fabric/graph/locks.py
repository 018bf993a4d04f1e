from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random

from ..errors import ConflictError


class LockManager:
    """Per-id advisory locks for write serialisation.

    Ids are always acquired in sorted order so two writers that need
    overlapping sets cannot deadlock. Locks are re-entrant per thread.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, ids: Iterable[str]) -> Iterator[None]:
        keys = sorted({i for i in ids if i})
        acquired: list[threading.RLock] = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


def conflict_retry(attempts: int = 3):
    """Retry an idempotent write when an optimistic version check fails."""
    return retry(
        reraise=True,
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_random(min=0.0, max=0.05),
        retry=retry_if_exception_type(ConflictError),
    )
