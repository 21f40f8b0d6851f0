import logging
import random
import threading
from unittest import mock

import pytest

from localcanary import config
from localcanary.logging import setup
from localcanary.runtime import hooks
from localcanary.services.routing import usage
from localcanary.services.routing.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    ThrottledError,
)
from localcanary.services.routing.models import AdmissionMode, AliasRouting, LatestPointer
from localcanary.services.routing.persistence import FileStateBackend
from localcanary.services.routing.retries import retry_on_throttle
from localcanary.services.routing.service import (
    RoutingService,
    configure_logging,
    log_usage_summary,
)
from localcanary.utils.backoff import ExponentialBackoff


def echo_executor(target, payload):
    return {"code": target.code_ref, "payload": payload}


def test_canary_rollout_end_to_end(routing_service, create_function):
    function_name = create_function("checkout", code_ref="code-v1")
    versions = routing_service.versions
    aliases = routing_service.aliases
    router = routing_service.router

    assert versions.publish(function_name).version_id == 1
    aliases.create_alias(function_name, "PROD", 1)
    assert aliases.resolve(function_name, "PROD") == AliasRouting(
        primary_version_id=1, secondary_version_id=None, secondary_weight=None
    )

    versions.update_latest(function_name, "code-v2", "config-1")
    assert versions.publish(function_name).version_id == 2
    aliases.update_alias(function_name, "PROD", 1, 2, 0.5)

    rng = random.Random(20240501)
    selected = [
        router.resolve_invocation_target(function_name, "PROD", rng=rng) for _ in range(1_000)
    ]
    # draws of this seed that fall below 0.5
    assert selected.count(2) == 511
    assert selected.count(1) == 489

    aliases.update_alias(function_name, "PROD", 2)
    assert {router.resolve_invocation_target(function_name, "PROD") for _ in range(100)} == {2}
    result = routing_service.invoke(function_name, "PROD", "hello", echo_executor)
    assert result.executed_version == "2"
    assert result.payload == {"code": "code-v2", "payload": "hello"}

    versions.delete(function_name, 1)
    assert not versions.exists(function_name, 1)


class TestInvoke:
    def test_invoke_alias(self, routing_service, create_function):
        function_name = create_function()
        routing_service.versions.publish(function_name)
        routing_service.aliases.create_alias(function_name, "live", 1)

        result = routing_service.invoke(function_name, "live", {"a": 1}, echo_executor)

        assert result.function_name == function_name
        assert result.qualifier == "live"
        assert result.executed_version == "1"
        assert result.payload == {"code": "code-1", "payload": {"a": 1}}
        assert routing_service.governor.in_flight(function_name) == 0
        assert usage.invocations.aggregate() == {"count": 1}
        assert usage.admitted.get(function_name) == 1

    def test_invoke_latest(self, routing_service, create_function):
        function_name = create_function()
        routing_service.versions.update_latest(function_name, "code-2", "config-2")

        for qualifier in [None, "$LATEST"]:
            result = routing_service.invoke(function_name, qualifier, None, echo_executor)
            assert result.executed_version == "$LATEST"
            assert result.payload["code"] == "code-2"

    def test_invoke_passes_resolved_target(self, routing_service, create_function):
        function_name = create_function()
        routing_service.versions.publish(function_name)
        executor = mock.Mock(return_value="ok")

        routing_service.invoke(function_name, "1", "payload", executor)

        target, payload = executor.call_args.args
        assert target == routing_service.versions.get(function_name, 1)
        assert payload == "payload"

    def test_invoke_releases_permit_on_error(self, routing_service, create_function):
        function_name = create_function()
        routing_service.set_reserved_limit(function_name, 1)

        def _failing(target, payload):
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            routing_service.invoke(function_name, None, None, _failing)

        assert routing_service.governor.in_flight(function_name) == 0
        routing_service.invoke(function_name, None, None, echo_executor)

    def test_invoke_throttled_does_not_call_executor(self, routing_service, create_function):
        function_name = create_function()
        routing_service.set_reserved_limit(function_name, 1)
        executor = mock.Mock()

        with routing_service.governor.try_acquire(function_name):
            with pytest.raises(ThrottledError):
                routing_service.invoke(function_name, None, None, executor)

        executor.assert_not_called()
        assert usage.throttled.get(function_name) == 1

    def test_invoke_unknown_target(self, routing_service, create_function):
        function_name = create_function()
        with pytest.raises(NotFoundError):
            routing_service.invoke(function_name, "live", None, echo_executor)
        with pytest.raises(NotFoundError):
            routing_service.invoke("other", None, None, echo_executor)

    def test_invoke_function_deleted_before_admission(
        self, routing_service, create_function, monkeypatch
    ):
        function_name = create_function()
        governor = routing_service.governor
        try_acquire = governor.try_acquire

        def _delete_then_acquire(name, version_id=None):
            routing_service.delete_function(name)
            return try_acquire(name, version_id=version_id)

        monkeypatch.setattr(governor, "try_acquire", _delete_then_acquire)
        executor = mock.Mock()

        with pytest.raises(NotFoundError):
            routing_service.invoke(function_name, None, None, executor)

        executor.assert_not_called()
        assert function_name not in governor._functions
        assert governor.unreserved_in_flight() == 0
        assert usage.invocations.aggregate() == {"count": 0}

    def test_get_invocation_target(self, routing_service, create_function):
        function_name = create_function()
        version = routing_service.versions.publish(function_name)

        assert routing_service.get_invocation_target(function_name, "1") == version
        assert isinstance(routing_service.get_invocation_target(function_name), LatestPointer)


class TestRetryOnThrottle:
    def test_retry_until_admitted(self, routing_service, create_function):
        function_name = create_function()
        routing_service.set_reserved_limit(function_name, 1)
        held = routing_service.governor.try_acquire(function_name)
        sleeps = []

        def _sleep(interval):
            sleeps.append(interval)
            if len(sleeps) == 2:
                held.release()

        invoke = retry_on_throttle(
            routing_service.invoke,
            ExponentialBackoff(randomization_factor=0, max_retries=5),
            sleep=_sleep,
        )
        result = invoke(function_name, None, "payload", echo_executor)

        assert result.payload["payload"] == "payload"
        assert sleeps == [0.05, 0.1]

    def test_retry_gives_up(self, routing_service, create_function):
        function_name = create_function()
        routing_service.set_reserved_limit(function_name, 1)
        routing_service.set_reserved_limit(function_name, 0)
        sleep = mock.Mock()

        invoke = retry_on_throttle(
            routing_service.invoke, ExponentialBackoff(max_retries=3), sleep=sleep
        )
        with pytest.raises(ThrottledError):
            invoke(function_name, None, None, echo_executor)

        assert sleep.call_count == 3
        # every call starts with a fresh backoff policy
        with pytest.raises(ThrottledError):
            invoke(function_name, None, None, echo_executor)
        assert sleep.call_count == 6

    def test_other_errors_are_not_retried(self):
        fn = mock.Mock(side_effect=NotFoundError("missing"))
        sleep = mock.Mock()

        with pytest.raises(NotFoundError):
            retry_on_throttle(fn, sleep=sleep)()

        fn.assert_called_once()
        sleep.assert_not_called()


class TestFunctionLifecycle:
    def test_delete_function_drops_reservation(self, routing_service, create_function):
        function_name = create_function()
        routing_service.set_reserved_limit(function_name, 50)
        assert routing_service.governor.unreserved_capacity() == 50

        routing_service.delete_function(function_name)

        assert routing_service.governor.unreserved_capacity() == 100
        with pytest.raises(NotFoundError):
            routing_service.set_reserved_limit(function_name, 1)
        with pytest.raises(NotFoundError):
            routing_service.remove_reservation(function_name)

    def test_reservation_of_unknown_function(self, routing_service):
        with pytest.raises(NotFoundError):
            routing_service.set_reserved_limit("other", 1)

    def test_delete_waits_for_reservation_change(
        self, routing_service, create_function, monkeypatch
    ):
        function_name = create_function()
        governor = routing_service.governor
        set_reserved_limit = governor.set_reserved_limit
        deleter = threading.Thread(target=routing_service.delete_function, args=(function_name,))

        def _set_reserved_limit(name, limit):
            deleter.start()
            deleter.join(0.1)
            assert deleter.is_alive()
            return set_reserved_limit(name, limit)

        monkeypatch.setattr(governor, "set_reserved_limit", _set_reserved_limit)
        routing_service.set_reserved_limit(function_name, 50)
        deleter.join()

        assert routing_service.versions.list_functions() == []
        assert governor.reserved_limits() == {}
        assert governor.unreserved_capacity() == 100

    def test_delete_waits_for_reservation_removal(
        self, routing_service, create_function, monkeypatch
    ):
        function_name = create_function()
        routing_service.set_reserved_limit(function_name, 50)
        governor = routing_service.governor
        remove_reservation = governor.remove_reservation
        deleter = threading.Thread(target=routing_service.delete_function, args=(function_name,))

        def _remove_reservation(name):
            deleter.start()
            deleter.join(0.1)
            assert deleter.is_alive()
            return remove_reservation(name)

        monkeypatch.setattr(governor, "remove_reservation", _remove_reservation)
        routing_service.remove_reservation(function_name)
        deleter.join()

        assert routing_service.versions.list_functions() == []
        assert function_name not in governor._functions
        assert governor.unreserved_capacity() == 100


class TestState:
    def test_persistence_round_trip(self, tmp_path):
        path = str(tmp_path / "state" / "routing.state")
        service = RoutingService(account_pool_limit=100, state_backend=FileStateBackend(path))
        service.start()
        service.create_function("fn", "code-1", "config-1")
        service.versions.publish("fn")
        service.versions.update_latest("fn", "code-2", "config-2")
        service.versions.publish("fn")
        alias = service.aliases.create_alias("fn", "live", 1)
        alias = service.aliases.update_alias("fn", "live", 1, 2, 0.2, revision_id=alias.revision_id)
        service.set_reserved_limit("fn", 5)
        service.stop()

        restored = RoutingService(account_pool_limit=100, state_backend=FileStateBackend(path))
        restored.start()

        assert restored.versions.list_functions() == ["fn"]
        assert restored.versions.get("fn", 1).code_ref == "code-1"
        assert restored.versions.get_latest("fn").code_ref == "code-2"
        restored_alias = restored.aliases.get_alias("fn", "live")
        assert restored_alias.routing == AliasRouting(1, 2, 0.2)
        assert restored_alias.revision_id == alias.revision_id
        assert restored.governor.get_reserved_limit("fn") == 5
        assert restored.governor.unreserved_capacity() == 95
        # version ids continue where the saved state left off
        assert restored.versions.publish("fn").version_id == 3

    def test_persistence_full_pool_with_disabled_function(self, tmp_path):
        path = str(tmp_path / "routing.state")
        service = RoutingService(
            account_pool_limit=10, minimum_unreserved=0, state_backend=FileStateBackend(path)
        )
        service.create_function("a", "code", "config")
        service.create_function("b", "code", "config")
        service.set_reserved_limit("a", 5)
        service.set_reserved_limit("b", 1)
        service.set_reserved_limit("b", 0)
        service.set_reserved_limit("a", 10)
        service.save_state()

        restored = RoutingService(
            account_pool_limit=10, minimum_unreserved=0, state_backend=FileStateBackend(path)
        )
        restored.load_state()

        assert restored.versions.list_functions() == ["a", "b"]
        assert restored.governor.reserved_limits() == {"a": 10, "b": 0}
        assert restored.governor.get_admission_mode("b") == AdmissionMode.DISABLED
        assert restored.governor.unreserved_capacity() == 0

    def test_failed_load_keeps_current_state(self, tmp_path):
        path = str(tmp_path / "routing.state")
        service = RoutingService(account_pool_limit=100, state_backend=FileStateBackend(path))
        service.create_function("fn", "code", "config")
        service.set_reserved_limit("fn", 50)
        service.save_state()

        smaller = RoutingService(account_pool_limit=20, state_backend=FileStateBackend(path))
        smaller.create_function("other", "code", "config")
        smaller.set_reserved_limit("other", 5)

        with pytest.raises(InvalidArgumentError):
            smaller.load_state()

        assert smaller.versions.list_functions() == ["other"]
        assert smaller.governor.reserved_limits() == {"other": 5}
        assert smaller.governor.unreserved_capacity() == 15

    def test_load_without_saved_state(self, tmp_path):
        service = RoutingService(state_backend=FileStateBackend(str(tmp_path / "missing.state")))
        service.start()
        assert service.versions.list_functions() == []

    def test_save_and_load_lifecycle_hooks(self, tmp_path):
        service = RoutingService(state_backend=FileStateBackend(str(tmp_path / "routing.state")))
        service.create_function("fn", "code", "config")
        with mock.patch.object(service, "on_before_state_save") as before, mock.patch.object(
            service, "on_after_state_save"
        ) as after:
            service.save_state()
        before.assert_called_once()
        after.assert_called_once()

    def test_reset(self, routing_service, create_function):
        function_name = create_function()
        routing_service.set_reserved_limit(function_name, 10)

        routing_service.reset()

        assert routing_service.versions.list_functions() == []
        mode = routing_service.governor.get_admission_mode(function_name)
        assert mode == AdmissionMode.UNRESERVED
        assert routing_service.governor.account_pool_limit == 100
        assert routing_service.governor.minimum_unreserved == 10


class TestHooks:
    def test_start_and_stop_run_hooks(self):
        service = RoutingService()
        with mock.patch.object(hooks.on_service_start, "run") as on_start, mock.patch.object(
            hooks.on_service_shutdown, "run"
        ) as on_shutdown:
            service.start()
            service.stop()
            service.stop()

        on_start.assert_called_once_with(service)
        on_shutdown.assert_called_once_with(service)

    def test_log_usage_summary(self, routing_service, create_function, caplog):
        function_name = create_function()
        routing_service.invoke(function_name, None, None, echo_executor)

        with caplog.at_level(logging.INFO, logger="localcanary.services.routing.service"):
            log_usage_summary(routing_service)

        assert "routing:admitted" in caplog.text
        assert "routing:invocations" in caplog.text

    def test_stop_logs_usage_summary(self, routing_service, create_function, caplog):
        function_name = create_function()
        routing_service.invoke(function_name, None, None, echo_executor)

        with caplog.at_level(logging.INFO, logger="localcanary.services.routing.service"):
            routing_service.stop()

        assert "Routing usage" in caplog.text
        assert "routing:invocations" in caplog.text

    def test_hooks_are_registered(self):
        start_hooks = [plugin.fn for plugin in hooks.on_service_start.manager.load_all()]
        shutdown_hooks = [plugin.fn for plugin in hooks.on_service_shutdown.manager.load_all()]

        assert configure_logging in start_hooks
        assert log_usage_summary in shutdown_hooks

    def test_configure_logging(self, monkeypatch):
        setup_logging = mock.Mock()
        monkeypatch.setattr(setup, "setup_logging", setup_logging)
        monkeypatch.setattr(config, "CANARY_LOG", "warn")

        configure_logging(RoutingService())

        setup_logging.assert_called_once_with(logging.WARNING)
