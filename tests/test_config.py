"""Tests for StoreConfig validation, create_registry and the error channel."""

import pytest
from pydantic import ValidationError

from modstorex import (
    ConfigurationError, ErrorHandler, ErrorKind, ErrorReport, StoreConfig, UpdateFunctionError, create_action,
    create_registry, define_module,
)


class TestStoreConfig:
    def test_defaults(self):
        config = StoreConfig()
        assert config.scheduler == "asyncio"
        assert config.raise_update_errors is False
        assert config.max_drain_tasks is None
        assert config.log_errors is True

    def test_rejects_unknown_scheduler(self):
        with pytest.raises(ValidationError):
            StoreConfig(scheduler="threads")

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            StoreConfig(freeze_everything=True)

    def test_is_frozen(self):
        config = StoreConfig()
        with pytest.raises(ValidationError):
            config.scheduler = "manual"


class TestCreateRegistry:
    def test_overrides(self):
        registry = create_registry(scheduler="manual", max_drain_tasks=10)
        assert registry.config.scheduler == "manual"
        assert registry.config.max_drain_tasks == 10
        registry.teardown()

    def test_overrides_on_top_of_config(self):
        registry = create_registry(StoreConfig(scheduler="manual", log_errors=False), raise_update_errors=True)
        assert registry.config.scheduler == "manual"
        assert registry.config.log_errors is False
        assert registry.config.raise_update_errors is True
        registry.teardown()

    def test_invalid_override_becomes_configuration_error(self):
        with pytest.raises(ConfigurationError):
            create_registry(max_drain_tasks=0)

    def test_drain_limit_from_config(self):
        registry = create_registry(scheduler="manual", max_drain_tasks=1)
        mid = define_module("limited")
        ping = create_action(mid, "ping")
        registry.dispatch(ping())
        registry.dispatch(ping())
        assert registry.flush() == 1
        assert registry.pending_tasks == 1
        registry.teardown()


class TestErrorHandler:
    def test_report_reaches_every_handler(self):
        handler = ErrorHandler()
        first, second = [], []
        handler.register_handler(first.append)
        handler.register_handler(second.append)
        error = UpdateFunctionError("boom", "mod", None, ValueError("boom"))
        handler.report(ErrorKind.UPDATE, "mod", error)
        assert first == second == [ErrorReport(ErrorKind.UPDATE, "mod", error)]

    def test_unregister_is_idempotent(self):
        handler = ErrorHandler()
        seen = []
        unregister = handler.register_handler(seen.append)
        unregister()
        unregister()
        handler.report(ErrorKind.EFFECT, None, RuntimeError("x"))
        assert seen == []

    def test_failing_handler_does_not_stop_others(self):
        handler = ErrorHandler()
        seen = []

        def broken(report):
            raise RuntimeError("handler failed")

        handler.register_handler(broken)
        handler.register_handler(seen.append)
        handler.report(ErrorKind.LISTENER, None, RuntimeError("x"))
        assert len(seen) == 1

    def test_error_to_dict(self):
        error = UpdateFunctionError("boom", "mod", None, ValueError("boom"))
        data = error.to_dict()
        assert data["error_type"] == "UpdateFunctionError"
        assert data["message"] == "boom"
