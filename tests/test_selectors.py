"""Tests for memoized selectors and equality helpers."""

from modstorex import create_selector, shallow_equal


class TestCreateSelector:
    def test_single_selector_is_returned_as_is(self):
        select_count = lambda state: state["count"]
        assert create_selector(select_count) is select_count

    def test_result_is_memoized_on_identical_inputs(self):
        calls = []
        items = [1, 2, 3]

        def total(values):
            calls.append(values)
            return sum(values)

        selector = create_selector(lambda s: s["items"], result_fn=total)
        assert selector({"items": items, "other": 1}) == 6
        assert selector({"items": items, "other": 2}) == 6
        assert len(calls) == 1

        assert selector({"items": [1, 2]}) == 3
        assert len(calls) == 2

    def test_deep_comparison(self):
        calls = []
        selector = create_selector(lambda s: s["items"], result_fn=lambda v: calls.append(v) or len(v), deep=True)
        selector({"items": [1, 2]})
        selector({"items": [1, 2]})
        assert len(calls) == 1

    def test_several_inputs_over_several_modules(self):
        selector = create_selector(lambda a, b: a["n"], lambda a, b: b["n"], result_fn=lambda x, y: x + y)
        assert selector({"n": 1}, {"n": 2}) == 3

    def test_default_result_is_tuple_of_inputs(self):
        selector = create_selector(lambda s: s["a"], lambda s: s["b"])
        assert selector({"a": 1, "b": 2}) == (1, 2)

    def test_cache_clear(self):
        calls = []
        items = [1]
        selector = create_selector(lambda s: s, result_fn=lambda v: calls.append(v))
        selector(items)
        selector.cache_clear()
        selector(items)
        assert len(calls) == 2

    def test_as_projector(self, registry, counter):
        registry.register_container(counter.id, counter.reducer).enable()
        calls = []
        doubled = create_selector(lambda s: s["count"], result_fn=lambda c: {"doubled": c * 2})
        registry.subscribe(counter.id, doubled, shallow_equal, lambda n, p: calls.append(n["doubled"]))
        registry.dispatch(counter.increment())
        assert calls == [2]


class TestShallowEqual:
    def test_identical(self):
        value = {"a": 1}
        assert shallow_equal(value, value)

    def test_same_members(self):
        inner = [1]
        assert shallow_equal({"a": inner}, {"a": inner})
        assert shallow_equal((inner, 1), (inner, 1))

    def test_different_members(self):
        assert not shallow_equal({"a": [1]}, {"a": [1]})
        assert not shallow_equal({"a": 1}, {"b": 1})
        assert not shallow_equal([1], (1,))
        assert not shallow_equal(1, 2)
