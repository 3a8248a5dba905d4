"""Tests for epics: handler results, the error channel, async handlers and cancellation."""

import asyncio

import pytest
import reactivex
from reactivex import operators as ops

from modstorex import (
    EffectHandlerError, Epic, ErrorKind, InvalidEffectResultError, Registry, StoreConfig, create_action, create_epic,
    create_reducer, define_module, filter_type, lifecycle, on,
)


@pytest.fixture
def mod():
    mid = define_module("fx")

    class Actions:
        id = mid
        ping = create_action(mid, "ping")
        pong = create_action(mid, "pong")
        start = create_action(mid, "start")
        step1 = create_action(mid, "step1")
        step2 = create_action(mid, "step2")

    return Actions


@pytest.fixture
def seen(registry):
    collected = []
    registry.actions.subscribe(collected.append)
    return collected


def user_names(actions):
    return [a.type.name for a in actions if not a.type.is_lifecycle]


def mount(registry, module_id, epic, reducer=None):
    handle = registry.register_container(module_id, reducer or create_reducer({}), epic)
    handle.enable()
    return handle


class TestActionStream:
    def test_effect_chain(self, registry, mod, seen):
        epic = create_epic(
            (mod.start, lambda payload, context, action: mod.step1()),
            (mod.step1, lambda payload, context, action: mod.step2()),
        )
        mount(registry, mod.id, epic)
        registry.dispatch(mod.start())
        assert user_names(seen) == []

        registry.flush()
        assert user_names(seen) == ["start", "step1", "step2"]

    def test_lifecycle_actions_reach_the_stream(self, registry, mod, seen):
        mount(registry, mod.id, Epic())
        registry.flush()
        assert [a.type.name for a in seen] == ["$init", "$mounted"]

    def test_epic_reacts_to_its_own_mount(self, registry, mod, seen):
        epic = create_epic((lifecycle(mod.id).mounted, lambda payload, context, action: mod.ping()))
        mount(registry, mod.id, epic)
        registry.flush()
        assert user_names(seen) == ["ping"]

    def test_final_unmount_is_not_seen_by_own_epic(self, registry, mod, seen):
        calls = []
        epic = create_epic((lifecycle(mod.id).unmounted, lambda payload, context, action: calls.append(action)))
        handle = mount(registry, mod.id, epic)
        handle.disable()
        registry.flush()
        assert calls == []
        assert [a.type.name for a in seen][-1] == "$unmounted"


class TestHandlerResults:
    def test_sequence_keeps_order_and_skips_none(self, registry, mod, seen):
        epic = create_epic((mod.start, lambda payload, context, action: [mod.step1(), None, mod.step2()]))
        mount(registry, mod.id, epic)
        registry.dispatch(mod.start())
        registry.flush()
        assert user_names(seen) == ["start", "step1", "step2"]

    def test_generator(self, registry, mod, seen):
        def handler(payload, context, action):
            for _ in range(payload):
                yield mod.ping()

        mount(registry, mod.id, create_epic((mod.start, handler)))
        registry.dispatch(mod.start(3))
        registry.flush()
        assert user_names(seen) == ["start", "ping", "ping", "ping"]

    @pytest.mark.parametrize("result", [42, "step1", {"type": "step1"}])
    def test_invalid_result_is_reported(self, registry, reports, mod, result):
        mount(registry, mod.id, create_epic((mod.start, lambda payload, context, action: result)))
        registry.dispatch(mod.start())
        registry.flush()
        assert [r.kind for r in reports] == [ErrorKind.INVALID_EFFECT_RESULT]
        assert isinstance(reports[0].error, InvalidEffectResultError)
        assert reports[0].module_id == mod.id

    def test_context_reads_current_state(self, registry, mod, seen):
        reducer = create_reducer({"hits": 0}, on(mod.ping, lambda d, a: d.__setitem__("hits", d["hits"] + 1)))
        epic = create_epic((mod.start, lambda payload, context, action: mod.pong(context.get_state()["hits"])))
        mount(registry, mod.id, epic, reducer)
        registry.dispatch(mod.ping())
        registry.dispatch(mod.ping())
        registry.dispatch(mod.start())
        registry.flush()
        assert seen[-1] == mod.pong(2)

    def test_handler_can_wait_for_a_later_action(self, registry, mod):
        reducer = create_reducer({"result": None}, on(mod.step2, lambda d, a: d.__setitem__("result", a.payload)))
        epic = Epic()

        @epic.on(mod.start)
        def wait_for_reply(payload, context, action):
            return context.action_stream.pipe(
                filter_type(mod.step1),
                ops.take(1),
                ops.map(lambda reply: mod.step2(reply.payload)),
            )

        mount(registry, mod.id, epic, reducer)
        registry.dispatch(mod.start())
        registry.flush()
        assert registry.in_flight == 1

        registry.dispatch(mod.step1(5))
        registry.flush()
        assert registry.get_state(mod.id)["result"] == 5
        assert registry.in_flight == 0


class TestEffectErrors:
    def test_handler_error_is_reported_after_the_dispatch(self, registry, reports, mod, seen):
        epic = Epic()

        @epic.on(mod.ping)
        def broken(payload, context, action):
            raise ValueError("nope")

        @epic.on(mod.ping)
        def works(payload, context, action):
            return mod.pong()

        mount(registry, mod.id, epic)
        registry.dispatch(mod.ping())
        assert reports == []

        registry.flush()
        assert [r.kind for r in reports] == [ErrorKind.EFFECT]
        error = reports[0].error
        assert isinstance(error, EffectHandlerError)
        assert isinstance(error.__cause__, ValueError)
        assert user_names(seen) == ["ping", "pong"]

        # the epic keeps handling later actions
        registry.dispatch(mod.ping())
        registry.flush()
        assert len(reports) == 2
        assert user_names(seen) == ["ping", "pong", "ping", "pong"]

    def test_awaitable_without_event_loop(self, registry, reports, mod):
        async def handler(payload, context, action):
            return mod.pong()

        mount(registry, mod.id, create_epic((mod.ping, handler)))
        registry.dispatch(mod.ping())
        registry.flush()
        assert [r.kind for r in reports] == [ErrorKind.EFFECT]
        assert "no asyncio event loop" in str(reports[0].error)
        assert registry.in_flight == 0


class TestStreamEffects:
    def test_stream_effect(self, registry, mod, seen):
        epic = Epic()

        @epic.stream
        def echo(action_stream, context):
            return action_stream.pipe(filter_type(mod.ping), ops.map(lambda action: mod.pong()))

        mount(registry, mod.id, epic)
        registry.dispatch(mod.ping())
        registry.flush()
        assert user_names(seen) == ["ping", "pong"]

    def test_failing_stream_only_ends_itself(self, registry, reports, mod, seen):
        epic = create_epic((mod.start, lambda payload, context, action: mod.step1()))

        @epic.stream
        def divide(action_stream, context):
            return action_stream.pipe(filter_type(mod.ping), ops.map(lambda action: 1 / 0))

        mount(registry, mod.id, epic)
        registry.dispatch(mod.ping())
        registry.dispatch(mod.start())
        registry.flush()
        assert [r.kind for r in reports] == [ErrorKind.EFFECT]
        assert user_names(seen) == ["ping", "start", "step1"]

    def test_stream_emitting_non_actions(self, registry, reports, mod):
        epic = Epic()
        epic.stream(lambda action_stream, context: action_stream.pipe(filter_type(mod.ping), ops.map(lambda a: 42)))
        mount(registry, mod.id, epic)
        registry.dispatch(mod.ping())
        registry.flush()
        assert [r.kind for r in reports] == [ErrorKind.INVALID_EFFECT_RESULT]

    def test_stream_effects_run_after_handlers(self, registry, mod, seen):
        epic = Epic()
        epic.stream(lambda action_stream, context: action_stream.pipe(
            filter_type(mod.ping), ops.map(lambda action: mod.pong())))
        epic.on(mod.ping, lambda payload, context, action: mod.step1())

        mount(registry, mod.id, epic)
        registry.dispatch(mod.ping())
        registry.flush()
        assert user_names(seen) == ["ping", "step1", "pong"]


class TestEpicComposition:
    def test_merge_and_handled_types(self, mod):
        first = create_epic((mod.ping, lambda payload, context, action: None))
        second = create_epic((mod.start, lambda payload, context, action: None))
        assert first.merge(second) is first
        assert first.handled_types == {mod.ping.type, mod.start.type}

    def test_filter_type_operator(self, mod):
        collected = []
        reactivex.from_iterable([mod.ping(), mod.pong(), 42]).pipe(filter_type(mod.ping)).subscribe(collected.append)
        assert collected == [mod.ping()]


class TestAsyncScheduler:
    def test_async_handler(self, error_handler, mod):
        async def main():
            registry = Registry(StoreConfig(log_errors=False), error_handler)
            reducer = create_reducer({"user": None}, on(mod.pong, lambda d, a: d.__setitem__("user", a.payload)))
            epic = Epic()

            @epic.on(mod.ping)
            async def load(user_id, context, action):
                await asyncio.sleep(0)
                return mod.pong({"id": user_id})

            mount(registry, mod.id, epic, reducer)
            registry.dispatch(mod.ping(7))
            await registry.settle(timeout=1)
            state = registry.get_state(mod.id)
            registry.teardown()
            return state

        state = asyncio.run(main())
        assert state["user"]["id"] == 7

    def test_queue_drains_on_the_running_loop(self, error_handler, mod):
        async def main():
            registry = Registry(StoreConfig(log_errors=False), error_handler)
            collected = []
            registry.actions.subscribe(collected.append)
            mount(registry, mod.id, create_epic((mod.start, lambda payload, context, action: mod.step1())))
            registry.dispatch(mod.start())
            assert collected == []
            for _ in range(3):
                await asyncio.sleep(0)
            registry.teardown()
            return collected

        assert user_names(asyncio.run(main())) == ["start", "step1"]

    def test_disable_cancels_running_handlers(self, error_handler, reports, mod):
        cancelled = []
        contexts = []

        async def main():
            registry = Registry(StoreConfig(log_errors=False), error_handler)
            started = asyncio.Event()

            async def slow(payload, context, action):
                contexts.append(context)
                started.set()
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.append(True)
                    raise
                return mod.pong()

            reducer = create_reducer({"done": False}, on(mod.pong, lambda d, a: d.__setitem__("done", True)))
            handle = mount(registry, mod.id, create_epic((mod.ping, slow)), reducer)
            registry.dispatch(mod.ping())
            await asyncio.wait_for(started.wait(), 1)
            assert registry.in_flight == 1

            handle.disable()
            for _ in range(5):
                await asyncio.sleep(0)
            state = registry.get_state(mod.id)
            registry.teardown()
            return state

        state = asyncio.run(main())
        assert cancelled == [True]
        assert contexts[0].is_cancelled
        assert state == {"done": False}
        assert reports == []

    def test_disable_cancels_only_its_own_handlers(self, error_handler, reports):
        first_id, second_id = define_module("first"), define_module("second")
        go_first, done_first = create_action(first_id, "go"), create_action(first_id, "done")
        go_second, done_second = create_action(second_id, "go"), create_action(second_id, "done")

        async def main():
            registry = Registry(StoreConfig(log_errors=False), error_handler)
            release = asyncio.Event()
            started = []

            def waiting(result):
                async def handler(payload, context, action):
                    started.append(context.module_id)
                    await release.wait()
                    return result()
                return handler

            def flag(done):
                return create_reducer({"done": False}, on(done, lambda d, a: d.__setitem__("done", True)))

            first = mount(registry, first_id, create_epic((go_first, waiting(done_first))), flag(done_first))
            mount(registry, second_id, create_epic((go_second, waiting(done_second))), flag(done_second))
            registry.dispatch(go_first())
            registry.dispatch(go_second())
            for _ in range(5):
                await asyncio.sleep(0)
            assert started == [first_id, second_id]
            assert registry.in_flight == 2

            first.disable()
            assert registry.in_flight == 1
            release.set()
            await registry.settle(timeout=1)
            states = registry.get_state(first_id), registry.get_state(second_id)
            registry.teardown()
            return states

        first_state, second_state = asyncio.run(main())
        assert first_state == {"done": False}
        assert second_state == {"done": True}
        assert reports == []
