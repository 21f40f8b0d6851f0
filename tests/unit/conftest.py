import random

import pytest

from localcanary.services.routing.service import RoutingService
from localcanary.utils.analytics import usage


@pytest.fixture(autouse=True)
def reset_usage_counters():
    """
    Automatically resets all usage counters before and after each unit test.
    """
    usage.reset()
    yield
    usage.reset()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def routing_service(rng):
    service = RoutingService(account_pool_limit=100, minimum_unreserved=10, rng=rng)
    yield service
    service.stop()


@pytest.fixture
def create_function(routing_service):
    """Factory fixture creating functions with a ``$LATEST`` working copy."""

    def _create(function_name: str = "my-function", code_ref="code-1", config_ref="config-1"):
        routing_service.create_function(function_name, code_ref, config_ref)
        return function_name

    return _create
