import threading
from contextlib import contextmanager


class KeyedLock:
    """
    One mutex per key, created on demand and dropped when nobody holds or
    waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self):
        with self._guard:
            return len(self._locks)
