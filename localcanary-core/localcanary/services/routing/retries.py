"""
Caller-side retries for throttled invocations. Admission itself never retries, executors that want to wait for a free
slot wrap their calls with ``retry_on_throttle``.
"""

import dataclasses
import functools
import logging
import time
from typing import Callable, Optional, TypeVar

from localcanary.services.routing.exceptions import ThrottledError
from localcanary.utils.backoff import ExponentialBackoff

LOG = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_throttle(
    fn: Callable[..., T],
    backoff: Optional[ExponentialBackoff] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[..., T]:
    """
    Wraps ``fn`` so that a ``ThrottledError`` is retried after a backoff period. Once the backoff is exhausted, the
    last ``ThrottledError`` is raised. Any other exception propagates immediately.

    Example::

        invoke = retry_on_throttle(service.invoke, ExponentialBackoff(max_retries=3))
        result = invoke("my-function", "live", payload, executor)

    :param fn: the callable to wrap
    :param backoff: the backoff policy, a fresh policy is created for every call from this template
    :param sleep: sleep function, replaceable in tests
    :return: the wrapped callable
    """
    template = backoff or ExponentialBackoff()

    @functools.wraps(fn)
    def _wrapper(*args, **kwargs) -> T:
        policy = dataclasses.replace(template)
        while True:
            try:
                return fn(*args, **kwargs)
            except ThrottledError as e:
                interval = policy.next_backoff()
                if interval <= 0:
                    LOG.debug("Giving up after %d retries: %s", policy.retries - 1, e.reason)
                    raise
                LOG.debug("Throttled (%s), retrying in %.3fs", e.reason, interval)
                sleep(interval)

    return _wrapper
