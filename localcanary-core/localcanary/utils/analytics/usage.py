"""
Usage counters for the routing layer. Counters register themselves in a module-level registry, ``aggregate()``
collects the state of all registered counters into one payload that a metrics sink can pick up.
"""

import threading
from typing import Any

from localcanary import config

# Counters have to register with the registry
collector_registry: dict[str, Any] = dict()


class UsageSetCounter:
    """
    Use this counter to count occurrences of unique values

    Example:
        admitted = UsageSetCounter("routing:admitted")
        admitted.record("my-function")
        admitted.record("other-function")
        admitted.record("other-function")
        admitted.aggregate() # returns {"my-function": 1, "other-function": 2}
    """

    state: dict[str, int]
    namespace: str

    def __init__(self, namespace: str):
        self.enabled = not config.DISABLE_EVENTS
        self.state = {}
        self._lock = threading.Lock()
        self.namespace = namespace
        collector_registry[namespace] = self

    def record(self, value: str):
        if self.enabled:
            with self._lock:
                self.state[value] = self.state.get(value, 0) + 1

    def get(self, value: str) -> int:
        return self.state.get(value, 0)

    def aggregate(self) -> dict:
        with self._lock:
            return dict(self.state)

    def reset(self):
        with self._lock:
            self.state = {}


class UsageCounter:
    """
    Use this counter to count numeric values

    Example:
        my_counter = UsageCounter("routing:somefeature")
        my_counter.increment()
        my_counter.increment()
        my_counter.aggregate()  # returns {"count": 2}
    """

    state: int
    namespace: str

    def __init__(self, namespace: str):
        self.enabled = not config.DISABLE_EVENTS
        self.state = 0
        self._lock = threading.Lock()
        self.namespace = namespace
        collector_registry[namespace] = self

    def increment(self):
        if self.enabled:
            with self._lock:
                self.state += 1

    def aggregate(self) -> dict:
        return {"count": self.state}

    def reset(self):
        with self._lock:
            self.state = 0


def aggregate() -> dict:
    aggregated_payload = {}
    for ns, collector in collector_registry.items():
        agg = collector.aggregate()
        if agg:
            aggregated_payload[ns] = agg
    return aggregated_payload


def reset():
    """Resets the state of all registered counters."""
    for collector in collector_registry.values():
        collector.reset()
