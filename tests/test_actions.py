"""Tests for module ids, action types, action creators and matchers."""

import pytest
from immutables import Map

from modstorex import (
    Action, ActionError, ActionType, LIFECYCLE_NAMES, TypeMatcher, create_action, define_module, lifecycle, of_type,
)


class TestModuleId:
    def test_each_definition_is_unique(self):
        a = define_module("same")
        b = define_module("same")
        assert a != b
        assert a.value < b.value
        assert a.label == b.label == "same"

    def test_equality_by_value(self):
        a = define_module("x")
        assert a == a
        assert len({a, a}) == 1

    def test_is_immutable(self):
        mid = define_module("x")
        with pytest.raises(AttributeError):
            mid.value = 3


class TestActionType:
    def test_structural_equality(self):
        mid = define_module("m")
        assert ActionType(mid, "go") == ActionType(mid, "go")
        assert hash(ActionType(mid, "go")) == hash(ActionType(mid, "go"))

    def test_same_name_in_different_modules_differs(self):
        assert ActionType(define_module("a"), "go") != ActionType(define_module("b"), "go")


class TestAction:
    def test_immutable(self):
        action = Action(ActionType(define_module(), "x"), 1)
        with pytest.raises(AttributeError):
            action.payload = 2

    def test_structural_equality(self):
        t = ActionType(define_module(), "x")
        assert Action(t, 1) == Action(t, 1)
        assert Action(t, 1) != Action(t, 2)

    def test_unhashable_payload_still_hashes(self):
        t = ActionType(define_module(), "x")
        assert hash(Action(t, [1, 2])) == hash(t)


class TestCreateAction:
    def test_without_payload(self):
        mid = define_module("counter")
        increment = create_action(mid, "increment")
        action = increment()
        assert action.type == ActionType(mid, "increment")
        assert action.payload is None
        assert increment.type == action.type

    def test_single_argument_payload(self):
        add = create_action(define_module(), "add")
        assert add(5).payload == 5

    def test_prepare_fn(self):
        add = create_action(define_module(), "add", lambda a, b: a + b)
        assert add(2, 3).payload == 5

    def test_keyword_arguments_become_frozen_map(self):
        login = create_action(define_module(), "login")
        payload = login(user="ann", remember=True).payload
        assert isinstance(payload, Map)
        assert payload["user"] == "ann"

    def test_freeze_can_be_disabled(self):
        save = create_action(define_module(), "save", freeze=False)
        assert save({"a": 1}).payload == {"a": 1}
        assert isinstance(save({"a": 1}).payload, dict)

    @pytest.mark.parametrize("name", LIFECYCLE_NAMES)
    def test_lifecycle_names_are_reserved(self, name):
        with pytest.raises(ActionError):
            create_action(define_module(), name)

    def test_requires_module_id(self):
        with pytest.raises(ActionError):
            create_action("counter", "increment")


class TestMatchers:
    def test_of_type_accepts_creators_and_types(self):
        mid = define_module()
        a = create_action(mid, "a")
        b = create_action(mid, "b")
        matcher = of_type(a, b.type)
        assert matcher(a())
        assert matcher(b())
        assert not matcher(create_action(mid, "c")())

    def test_of_type_flattens_iterables_and_matchers(self):
        mid = define_module()
        a, b, c = (create_action(mid, n) for n in "abc")
        matcher = of_type([a, of_type(b)], c)
        assert matcher.types == {a.type, b.type, c.type}

    def test_union_operator(self):
        mid = define_module()
        a, b = create_action(mid, "a"), create_action(mid, "b")
        assert (of_type(a) | b)(b())

    def test_empty_matcher_rejected(self):
        with pytest.raises(ActionError):
            of_type()

    def test_garbage_rejected(self):
        with pytest.raises(ActionError):
            of_type(42)

    def test_lifecycle_types_match(self):
        mid = define_module()
        types = lifecycle(mid)
        assert types.init.name == "$init"
        assert types.unmounted.is_lifecycle
        assert isinstance(of_type(types.init, types.mounted), TypeMatcher)
