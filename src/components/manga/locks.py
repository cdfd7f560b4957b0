"""
Per-item serialisation of writes.

Every write reads the item and then writes it back (page-number assignment,
cover replacement, edits, moderation, delete). Holding the item's lock across
both steps closes the race for requests served by this process. Across
processes the unique index on (manga_id, page_number) and the conditional
moderation update catch what slips through.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from src.domain.errors import ConflictError


class KeyedLocks:
    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        # key -> (lock, number of holders and waiters)
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    def _release_slot(self, name: str) -> None:
        with self._guard:
            lock, users = self._locks[name]
            if users <= 1:
                del self._locks[name]
            else:
                self._locks[name] = (lock, users - 1)

    @contextmanager
    def hold(self, key: UUID | str) -> Iterator[None]:
        name = str(key)
        with self._guard:
            lock, users = self._locks.get(name, (threading.Lock(), 0))
            self._locks[name] = (lock, users + 1)

        if not lock.acquire(timeout=self.timeout):
            self._release_slot(name)
            raise ConflictError("Another change to this manga is in progress, retry later")
        try:
            yield
        finally:
            lock.release()
            self._release_slot(name)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


item_locks = KeyedLocks()
