"""Concurrency synchronization utilities"""

import threading
from collections import defaultdict
from collections.abc import Callable


class SynchronizedDefaultDict(defaultdict):
    """
    A defaultdict whose item access is guarded by a lock, so the default factory runs at most once per key even when
    many threads access a missing key at the same time.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = threading.RLock()

    def fromkeys(self, keys, value=None):
        with self._lock:
            return super().fromkeys(keys, value)

    def __getitem__(self, key):
        with self._lock:
            return super().__getitem__(key)

    def __setitem__(self, key, value):
        with self._lock:
            super().__setitem__(key, value)

    def __delitem__(self, key):
        with self._lock:
            super().__delitem__(key)

    def pop(self, key, *args):
        with self._lock:
            return super().pop(key, *args)

    def snapshot(self) -> dict:
        """Returns a shallow copy of the current items."""
        with self._lock:
            return dict(self)

    def __len__(self):
        with self._lock:
            return super().__len__()


class Once:
    """
    An object that will perform an action exactly once.
    Inspired by Golang's [sync.Once](https://pkg.go.dev/sync#Once) operation.

    If the function raises an exception, the action is still considered done.
    """

    def __init__(self):
        self._is_done = False
        self._mu = threading.Lock()

    def do(self, fn: Callable[[], None]):
        if self._is_done:
            return

        with self._mu:
            if not self._is_done:
                try:
                    fn()
                finally:
                    self._is_done = True
