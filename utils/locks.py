import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List


class KeyedLocks:
    """
    One lock per key while someone holds or waits on it. Serialises work on the
    same identity across threads; an entry is dropped when its last holder leaves.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key → [lock, holders + waiters]
        self._locks: Dict[Hashable, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]
