import logging
import os
from typing import Optional, Union

from localcanary.constants import (
    DEFAULT_DATA_DIR,
    FALSE_STRINGS,
    LOG_LEVELS,
    TRACE_LOG_LEVELS,
    TRUE_STRINGS,
)


def eval_log_type(env_var_name: str) -> Union[str, bool]:
    """Get the log type from environment variable"""
    canary_log = os.environ.get(env_var_name, "").lower().strip()
    return canary_log if canary_log in LOG_LEVELS else False


def parse_boolean_env(env_var_name: str) -> Optional[bool]:
    """Parse the value of the given env variable and return True/False, or None if it is not a boolean value."""
    value = os.environ.get(env_var_name, "").lower().strip()
    if value in TRUE_STRINGS:
        return True
    if value in FALSE_STRINGS:
        return False
    return None


def is_env_true(env_var_name: str) -> bool:
    """Whether the given environment variable has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() in TRUE_STRINGS


def is_env_not_false(env_var_name: str) -> bool:
    """Whether the given environment variable is empty or has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() not in FALSE_STRINGS


# whether to enable verbose debug logging
CANARY_LOG = eval_log_type("CANARY_LOG")
DEBUG = is_env_true("DEBUG") or CANARY_LOG in TRACE_LOG_LEVELS

# whether to disable collection of usage counters (admitted, throttled, selected versions)
DISABLE_EVENTS = is_env_true("DISABLE_EVENTS")

# whether routing state is loaded on start and saved on shutdown
PERSISTENCE = is_env_true("PERSISTENCE")

# folder where persisted routing state is stored
CANARY_DATA_DIR = os.environ.get("CANARY_DATA_DIR", "").strip() or DEFAULT_DATA_DIR

# total number of concurrent executions shared by all functions (reserved and unreserved)
CANARY_LIMITS_CONCURRENT_EXECUTIONS = int(
    os.environ.get("CANARY_LIMITS_CONCURRENT_EXECUTIONS", 1_000)
)

# there must be at least <CANARY_LIMITS_MINIMUM_UNRESERVED_CONCURRENCY> concurrency left unreserved.
CANARY_LIMITS_MINIMUM_UNRESERVED_CONCURRENCY = int(
    os.environ.get("CANARY_LIMITS_MINIMUM_UNRESERVED_CONCURRENCY", 0)
)


def is_trace_logging_enabled():
    if CANARY_LOG:
        log_level = str(CANARY_LOG).upper()
        return log_level.lower() in TRACE_LOG_LEVELS
    return False


# set log levels immediately, but will be overwritten later by setup_logging
if DEBUG:
    logging.getLogger("").setLevel(logging.DEBUG)
    logging.getLogger("localcanary").setLevel(logging.DEBUG)
