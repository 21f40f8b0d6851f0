import dataclasses
import logging
import os
from typing import Any, Callable, Optional, Union

from localcanary import config, constants
from localcanary.logging.setup import setup_logging_from_config
from localcanary.runtime import hooks
from localcanary.services.routing import usage
from localcanary.services.routing.aliases import AliasTable
from localcanary.services.routing.concurrency import ConcurrencyGovernor
from localcanary.services.routing.exceptions import NotFoundError
from localcanary.services.routing.models import LatestPointer, RoutingStore, Version
from localcanary.services.routing.persistence import FileStateBackend
from localcanary.services.routing.router import Router, UniformSource
from localcanary.services.routing.versions import VersionStore
from localcanary.state import StateLifecycleHook
from localcanary.utils.analytics import usage as usage_analytics
from localcanary.utils.sync import Once

LOG = logging.getLogger(__name__)

InvocationTarget = Union[Version, LatestPointer]
Executor = Callable[[InvocationTarget, Any], Any]


@dataclasses.dataclass(frozen=True)
class InvocationResult:
    function_name: str
    qualifier: Optional[str]
    executed_version: str
    payload: Any


class RoutingService(StateLifecycleHook):
    """
    Wires version store, alias table, router and concurrency governor over one ``RoutingStore``, and implements the
    contract an invocation executor follows: resolve the target, acquire a permit, run, release.
    """

    store: RoutingStore
    versions: VersionStore
    aliases: AliasTable
    router: Router
    governor: ConcurrencyGovernor
    state_backend: Optional[FileStateBackend]

    def __init__(
        self,
        account_pool_limit: int = None,
        minimum_unreserved: int = None,
        rng: UniformSource = None,
        state_backend: FileStateBackend = None,
    ):
        self.store = RoutingStore()
        self.versions = VersionStore(self.store)
        self.aliases = AliasTable(self.versions)
        self.router = Router(self.aliases, rng=rng)
        self.governor = ConcurrencyGovernor(
            account_pool_limit=account_pool_limit, minimum_unreserved=minimum_unreserved
        )
        if state_backend is None and config.PERSISTENCE:
            state_backend = FileStateBackend(
                os.path.join(config.CANARY_DATA_DIR, constants.ROUTING_STATE_FILE)
            )
        self.state_backend = state_backend
        self._stop_once = Once()

    # Lifecycle

    def start(self) -> None:
        if self.state_backend:
            self.load_state()
        hooks.on_service_start.run(self)
        LOG.debug("Routing service started")

    def stop(self) -> None:
        self._stop_once.do(self._do_stop)

    def _do_stop(self):
        hooks.on_service_shutdown.run(self)
        if self.state_backend:
            self.save_state()
        LOG.debug("Routing service stopped")

    # Functions

    def create_function(self, function_name: str, code_ref: str, config_ref: str) -> LatestPointer:
        return self.versions.create_function(function_name, code_ref, config_ref)

    # function deletion and reservation changes serialize on the store lock

    def delete_function(self, function_name: str) -> None:
        with self.store.lock:
            self.versions.delete_function(function_name)
            self.governor.forget_function(function_name)

    def set_reserved_limit(self, function_name: str, limit: int):
        with self.store.lock:
            # raises if the function does not exist
            self.versions.get_function(function_name)
            return self.governor.set_reserved_limit(function_name, limit)

    def remove_reservation(self, function_name: str):
        with self.store.lock:
            self.versions.get_function(function_name)
            return self.governor.remove_reservation(function_name)

    # Invocation

    def get_invocation_target(
        self, function_name: str, qualifier: Optional[str] = None, rng: UniformSource = None
    ) -> InvocationTarget:
        target = self.router.resolve_qualifier(function_name, qualifier, rng=rng)
        if target == constants.LATEST_QUALIFIER:
            return self.versions.get_latest(function_name)
        return self.versions.get(function_name, target)

    def invoke(
        self,
        function_name: str,
        qualifier: Optional[str],
        payload: Any,
        executor: Executor,
        rng: UniformSource = None,
    ) -> InvocationResult:
        """
        Runs one invocation through routing and admission.

        The permit is released when the executor returns, raises, or is interrupted. Exceptions of the executor
        propagate unchanged; a ``ThrottledError`` is raised before the executor is called if no slot is available.

        :param function_name: name of the function
        :param qualifier: alias, version number, ``$LATEST`` or None
        :param payload: opaque payload handed to the executor
        :param executor: callable receiving the resolved version (or ``$LATEST`` pointer) and the payload
        :param rng: random source for the traffic split of an alias
        :return: the executor's result together with the executed version
        """
        target = self.get_invocation_target(function_name, qualifier, rng=rng)
        version_id = target.version_id if isinstance(target, Version) else None
        with self.governor.try_acquire(function_name, version_id=version_id) as permit:
            if function_name not in self.store.functions:
                # deleted between resolution and admission
                permit.release()
                self._forget_deleted_function(function_name)
                raise NotFoundError(f"Function not found: {function_name}")
            usage.invocations.increment()
            result = executor(target, payload)
        return InvocationResult(
            function_name=function_name,
            qualifier=qualifier,
            executed_version=target.qualifier,
            payload=result,
        )

    def _forget_deleted_function(self, function_name: str) -> None:
        with self.store.lock:
            if function_name not in self.store.functions:
                self.governor.forget_function(function_name)

    # State

    def dump_state(self) -> dict:
        return {
            "functions": self.store.dump(),
            "reserved_limits": self.governor.reserved_limits(),
        }

    def save_state(self) -> None:
        self.on_before_state_save()
        self.state_backend.save(self.dump_state())
        self.on_after_state_save()

    def load_state(self) -> None:
        state = self.state_backend.load()
        if state is None:
            LOG.debug("No routing state found in %s", self.state_backend)
            return
        self.on_before_state_load()
        governor = ConcurrencyGovernor(
            account_pool_limit=self.governor.account_pool_limit,
            minimum_unreserved=self.governor.minimum_unreserved,
        )
        # raises before anything is replaced if the reservations do not fit into the pool
        governor.load_reserved_limits(state["reserved_limits"])
        with self.store.lock:
            self.store.load(state["functions"])
            self.governor = governor
        self.on_after_state_load()
        LOG.info(
            "Restored %d functions and %d reservations",
            len(state["functions"]),
            len(state["reserved_limits"]),
        )

    def reset(self) -> None:
        self.on_before_state_reset()
        self.store.reset()
        self.governor = ConcurrencyGovernor(
            account_pool_limit=self.governor.account_pool_limit,
            minimum_unreserved=self.governor.minimum_unreserved,
        )
        self.on_after_state_reset()


@hooks.on_service_start(priority=100)
def configure_logging(service: RoutingService):
    setup_logging_from_config()


@hooks.on_service_shutdown()
def log_usage_summary(service: RoutingService):
    payload = usage_analytics.aggregate()
    if payload:
        LOG.info("Routing usage: %s", payload)
