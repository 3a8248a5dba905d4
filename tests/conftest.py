"""Shared fixtures: a manually drained registry, its error channel and a counter module."""

import pytest

from modstorex import ErrorHandler, Registry, StoreConfig, create_action, create_reducer, define_module, on


@pytest.fixture
def error_handler():
    return ErrorHandler()


@pytest.fixture
def reports(error_handler):
    collected = []
    error_handler.register_handler(collected.append)
    return collected


@pytest.fixture
def registry(error_handler):
    reg = Registry(StoreConfig(scheduler="manual", log_errors=False), error_handler)
    yield reg
    reg.teardown()


class Counter:
    """A small counter module used across tests."""

    def __init__(self, label="counter"):
        self.id = define_module(label)
        self.increment = create_action(self.id, "increment")
        self.add = create_action(self.id, "add")
        self.noop = create_action(self.id, "noop")
        self.reducer = create_reducer(
            {"count": 0, "meta": {"label": label}},
            on(self.increment, self._increment),
            on(self.add, self._add),
        )

    @staticmethod
    def _increment(draft, action):
        draft["count"] += 1

    @staticmethod
    def _add(draft, action):
        draft["count"] += action.payload


@pytest.fixture
def counter():
    return Counter()
