"""
Pending deletion-cost assignments.

Between "the allocator picked a value" and "a list of replicas shows it
persisted" the only record of the decision is this cache. It is never the
source of truth: once a replica carries its cost annotation the entry goes.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Tuple


class RWLock:
    """Many readers or one writer. A writer waits until in-flight readers finish."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        # holding the condition keeps new readers out until the write is done
        with self._cond:
            self._cond.wait_for(lambda: self._readers == 0)
            yield


class PendingCache:
    """Replica uid -> deletion cost decided locally but maybe not yet listed."""

    def __init__(self):
        self._lock = RWLock()
        self._data: Dict[str, int] = {}

    def get(self, uid: str) -> Tuple[Optional[int], bool]:
        with self._lock.read_locked():
            if uid in self._data:
                return self._data[uid], True
            return None, False

    def has(self, uid: str) -> bool:
        with self._lock.read_locked():
            return uid in self._data

    def get_all(self, uids: Iterable[str]) -> List[int]:
        with self._lock.read_locked():
            return [self._data[u] for u in uids if u in self._data]

    def set(self, uid: str, value: int) -> None:
        with self._lock.write_locked():
            self._data[uid] = int(value)

    def delete(self, uid: str) -> None:
        with self._lock.write_locked():
            self._data.pop(uid, None)

    def snapshot(self) -> Dict[str, int]:
        with self._lock.read_locked():
            return dict(self._data)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._data)
