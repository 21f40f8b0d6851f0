"""
Admission control for invocations. Every function is either unreserved (sharing the unreserved part of the account
pool with all other unreserved functions), reserved (with its own ceiling carved out of the account pool) or disabled
(reserved limit of 0). Admitted invocations hold a ``Permit`` until they release it.
"""

import logging
import threading
from enum import Enum
from typing import Optional

from localcanary import config
from localcanary.services.routing import usage
from localcanary.services.routing.exceptions import (
    InvalidArgumentError,
    InvalidStateError,
    ThrottledError,
    ThrottleReason,
)
from localcanary.services.routing.models import AdmissionMode, ConcurrencyConfig
from localcanary.utils.sync import SynchronizedDefaultDict

LOG = logging.getLogger(__name__)


class Pool(str, Enum):
    RESERVED = "RESERVED"
    UNRESERVED = "UNRESERVED"


class FunctionConcurrency:
    """Admission state of a single function. All fields are guarded by ``lock``."""

    lock: threading.Lock
    reserved_limit: Optional[int]
    in_flight: int
    in_flight_by_version: dict

    def __init__(self):
        self.lock = threading.Lock()
        self.reserved_limit = None
        self.in_flight = 0
        self.in_flight_by_version = {}


class Permit:
    """
    One admitted in-flight invocation slot. ``release`` must be called exactly once, whether the invocation
    succeeded, failed, timed out or was cancelled. Used as a context manager, the permit is released when the block
    is left.
    """

    function_name: str
    version_id: Optional[int]
    pool: Pool

    def __init__(
        self,
        governor: "ConcurrencyGovernor",
        state: FunctionConcurrency,
        function_name: str,
        version_id: Optional[int],
        pool: Pool,
    ):
        self._governor = governor
        self._state = state
        self._lock = threading.Lock()
        self._released = False
        self.function_name = function_name
        self.version_id = version_id
        self.pool = pool

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """
        Returns the slot to the pool it was drawn from.

        :raises InvalidStateError: if the permit has already been released
        """
        with self._lock:
            if self._released:
                raise InvalidStateError(
                    f"Permit for function {self.function_name} has already been released"
                )
            self._released = True
        self._governor._release(self)

    def __enter__(self) -> "Permit":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._released:
            self.release()

    def __repr__(self):
        return (
            f"Permit(function_name={self.function_name!r}, version_id={self.version_id!r}, "
            f"pool={self.pool.value}, released={self._released})"
        )


class ConcurrencyGovernor:
    """
    Tracks in-flight invocations and decides whether a new invocation is admitted or throttled.

    Reserved functions only ever take their own lock on the admission path. Unreserved functions additionally
    take the lock of the shared unreserved counter. Lock order is function lock, then unreserved lock. Changes of a
    reservation update the reserved sum and the function mode under both locks.
    """

    account_pool_limit: int
    minimum_unreserved: int

    def __init__(self, account_pool_limit: int = None, minimum_unreserved: int = None):
        if account_pool_limit is None:
            account_pool_limit = config.CANARY_LIMITS_CONCURRENT_EXECUTIONS
        if minimum_unreserved is None:
            minimum_unreserved = config.CANARY_LIMITS_MINIMUM_UNRESERVED_CONCURRENCY
        if account_pool_limit < 0:
            raise InvalidArgumentError(
                f"Account pool limit must not be negative, got {account_pool_limit}"
            )
        if not 0 <= minimum_unreserved <= account_pool_limit:
            raise InvalidArgumentError(
                f"Minimum unreserved concurrency must be between 0 and {account_pool_limit}, "
                f"got {minimum_unreserved}"
            )
        self.account_pool_limit = account_pool_limit
        self.minimum_unreserved = minimum_unreserved

        self._functions = SynchronizedDefaultDict(FunctionConcurrency)
        # serializes changes of reserved limits, guards _reserved_sum
        self._config_lock = threading.Lock()
        self._reserved_sum = 0
        self._unreserved_lock = threading.Lock()
        self._unreserved_in_flight = 0

    # Admission

    def try_acquire(self, function_name: str, version_id: Optional[int] = None) -> Permit:
        """
        Admits one invocation of the given function, or throttles it.

        :param function_name: name of the function to invoke
        :param version_id: the resolved version, only used for per-version bookkeeping
        :return: a permit that has to be released once the invocation finished
        :raises ThrottledError: if no slot is available
        """
        state = self._functions[function_name]
        with state.lock:
            limit = state.reserved_limit
            if limit is not None:
                if limit == 0:
                    self._throttle(
                        function_name,
                        f"Function {function_name} has its reserved concurrency set to 0",
                        ThrottleReason.FunctionInvocationDisabled,
                    )
                if state.in_flight >= limit:
                    self._throttle(
                        function_name,
                        f"Rate Exceeded. Reserved concurrency of {limit} reached for function {function_name}",
                        ThrottleReason.ReservedFunctionConcurrentInvocationLimitExceeded,
                    )
                pool = Pool.RESERVED
            else:
                with self._unreserved_lock:
                    capacity = self.unreserved_capacity()
                    if self._unreserved_in_flight >= capacity:
                        self._throttle(
                            function_name,
                            f"Rate Exceeded. Unreserved concurrency of {capacity} reached",
                            ThrottleReason.ConcurrentInvocationLimitExceeded,
                        )
                    self._unreserved_in_flight += 1
                pool = Pool.UNRESERVED

            state.in_flight += 1
            if version_id is not None:
                state.in_flight_by_version[version_id] = (
                    state.in_flight_by_version.get(version_id, 0) + 1
                )

        usage.admitted.record(function_name)
        return Permit(self, state, function_name, version_id, pool)

    def _throttle(self, function_name: str, message: str, reason: str):
        usage.throttled.record(function_name)
        LOG.debug("Throttled invocation of %s: %s", function_name, reason)
        raise ThrottledError(message, reason=reason)

    def _release(self, permit: Permit) -> None:
        state = permit._state
        with state.lock:
            if state.in_flight <= 0:
                raise InvalidStateError(
                    f"In-flight counter of function {permit.function_name} would become negative"
                )
            state.in_flight -= 1
            if permit.version_id is not None:
                remaining = state.in_flight_by_version.get(permit.version_id, 0) - 1
                if remaining > 0:
                    state.in_flight_by_version[permit.version_id] = remaining
                else:
                    state.in_flight_by_version.pop(permit.version_id, None)
        if permit.pool is Pool.UNRESERVED:
            with self._unreserved_lock:
                self._unreserved_in_flight -= 1

    # Reservations

    @staticmethod
    def _validate_limit(limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise InvalidArgumentError(
                f"Value '{limit}' at 'reservedConcurrentExecutions' failed to satisfy constraint: "
                f"Member must have value greater than or equal to 0"
            )

    def _check_reserved_sum(self, reserved_sum: int) -> None:
        if reserved_sum > self.account_pool_limit - self.minimum_unreserved:
            raise InvalidArgumentError(
                f"Specified ReservedConcurrentExecutions for function decreases account's "
                f"UnreservedConcurrentExecution below its minimum value of [{self.minimum_unreserved}]."
            )

    def set_reserved_limit(self, function_name: str, limit: int) -> ConcurrencyConfig:
        """
        Reserves ``limit`` concurrent executions of the account pool for the given function. A limit of 0 disables
        the function. In-flight invocations are not affected by a change, only new admissions are.

        :raises InvalidArgumentError: if the limit is negative, or the reserved sum would exceed the pool
        :raises InvalidStateError: if an unreserved function is disabled directly
        """
        self._validate_limit(limit)
        with self._config_lock:
            state = self._functions[function_name]
            current = state.reserved_limit
            if current is None and limit == 0:
                raise InvalidStateError(
                    f"Function {function_name} is unreserved, reserve concurrency before disabling it"
                )
            new_sum = self._reserved_sum - (current or 0) + limit
            self._check_reserved_sum(new_sum)
            # unreserved admissions see the new sum and the new mode together
            with state.lock, self._unreserved_lock:
                self._reserved_sum = new_sum
                state.reserved_limit = limit
        LOG.debug("Set reserved concurrency of %s to %s", function_name, limit)
        return ConcurrencyConfig(reserved_limit=limit, account_pool_limit=self.account_pool_limit)

    def remove_reservation(self, function_name: str) -> ConcurrencyConfig:
        """
        Returns a reserved function to the unreserved pool.

        :raises InvalidStateError: if the function is not in reserved mode
        """
        with self._config_lock:
            state = self._functions[function_name]
            with state.lock:
                current = state.reserved_limit
                if current is None:
                    raise InvalidStateError(f"Function {function_name} has no reserved concurrency")
                if current == 0:
                    raise InvalidStateError(
                        f"Function {function_name} is disabled, reserve concurrency before removing it"
                    )
                with self._unreserved_lock:
                    self._reserved_sum -= current
                    state.reserved_limit = None
        LOG.debug("Removed reserved concurrency of %s", function_name)
        return ConcurrencyConfig(reserved_limit=None, account_pool_limit=self.account_pool_limit)

    def forget_function(self, function_name: str) -> None:
        """
        Drops all admission state of a deleted function, including its reservation. Permits that are still in flight
        release into the dropped state.
        """
        with self._config_lock:
            state = self._functions.pop(function_name, None)
            if state is None:
                return
            with state.lock, self._unreserved_lock:
                if state.reserved_limit is not None:
                    self._reserved_sum -= state.reserved_limit
                    state.reserved_limit = None

    # Introspection

    def get_concurrency_config(self, function_name: str) -> ConcurrencyConfig:
        state = self._functions.get(function_name)
        return ConcurrencyConfig(
            reserved_limit=state.reserved_limit if state else None,
            account_pool_limit=self.account_pool_limit,
        )

    def get_admission_mode(self, function_name: str) -> AdmissionMode:
        return self.get_concurrency_config(function_name).mode

    def get_reserved_limit(self, function_name: str) -> Optional[int]:
        return self.get_concurrency_config(function_name).reserved_limit

    def in_flight(self, function_name: str, version_id: Optional[int] = None) -> int:
        state = self._functions.get(function_name)
        if not state:
            return 0
        with state.lock:
            if version_id is None:
                return state.in_flight
            return state.in_flight_by_version.get(version_id, 0)

    def unreserved_capacity(self) -> int:
        return self.account_pool_limit - self._reserved_sum

    def unreserved_in_flight(self) -> int:
        return self._unreserved_in_flight

    def reserved_limits(self) -> dict[str, int]:
        return {
            name: state.reserved_limit
            for name, state in self._functions.snapshot().items()
            if state.reserved_limit is not None
        }

    def load_reserved_limits(self, limits: dict[str, int]) -> None:
        """
        Restores reservations, e.g. from persisted state. The saved limits are applied as they are (disabled
        functions included) without replaying the transitions that led to them. Either all limits are restored, or
        none if they do not fit into the account pool.

        :raises InvalidArgumentError: if a limit is invalid, or the reserved sum would exceed the pool
        """
        for limit in limits.values():
            self._validate_limit(limit)
        with self._config_lock:
            current = self.reserved_limits()
            new_sum = (
                self._reserved_sum
                - sum(current.get(function_name, 0) for function_name in limits)
                + sum(limits.values())
            )
            self._check_reserved_sum(new_sum)
            for function_name, limit in limits.items():
                state = self._functions[function_name]
                with state.lock, self._unreserved_lock:
                    self._reserved_sum += limit - (state.reserved_limit or 0)
                    state.reserved_limit = limit
        LOG.debug("Restored %d reservations", len(limits))

    def account_settings(self) -> dict:
        return {
            "ConcurrentExecutions": self.account_pool_limit,
            "UnreservedConcurrentExecutions": self.unreserved_capacity(),
            "MinimumUnreservedConcurrentExecutions": self.minimum_unreserved,
            "ReservedConcurrentExecutions": self._reserved_sum,
            "UnreservedInFlight": self._unreserved_in_flight,
        }
