"""
基於 ModStoreX 的 Action 定義模組。

此模組提供模組識別碼（ModuleId）、Action 類型（ActionType）、
Action 類別、Action 生成器以及類型匹配器（TypeMatcher）。
Actions 是描述狀態變更意圖的不可變對象。
"""
import itertools
from typing import Any, Callable, Dict, FrozenSet, Generic, Iterable, NamedTuple, Optional, Union, overload

from immutables import Map as ImmutableMap

from .errors import ActionError
from .types import P, ActionCreator

# 保留的生命週期名稱，使用者無法以 create_action 建立
INIT = "$init"
MOUNTED = "$mounted"
REMOUNTED = "$remounted"
UNMOUNTING = "$unmounting"
UNMOUNTED = "$unmounted"
LIFECYCLE_NAMES = (INIT, MOUNTED, REMOUNTED, UNMOUNTING, UNMOUNTED)

_module_counter = itertools.count(1)


class ModuleId:
    """
    模組定義的不透明識別碼。

    每次呼叫 define_module 都會配發一個新的、單調遞增的整數值；
    相等性以該值比較，label 只用於日誌與除錯。
    """
    __slots__ = ('value', 'label')

    def __init__(self, label: str = ""):
        object.__setattr__(self, 'value', next(_module_counter))
        object.__setattr__(self, 'label', label)

    def __setattr__(self, name, value):
        raise AttributeError(f"Cannot modify immutable instance attribute '{name}'")

    def __eq__(self, other):
        if not isinstance(other, ModuleId):
            return NotImplemented
        return self.value == other.value

    def __hash__(self):
        return hash(('ModuleId', self.value))

    def __repr__(self):
        if self.label:
            return f"ModuleId({self.value}, '{self.label}')"
        return f"ModuleId({self.value})"


def define_module(label: str = "") -> ModuleId:
    """
    配發一個新的模組識別碼。

    Args:
        label: 可選的名稱，僅供日誌顯示

    Returns:
        全新的 ModuleId
    """
    return ModuleId(label)


class ActionType:
    """
    Action 的類型：(module_id, name) 二元組。

    兩個 ActionType 僅在兩個分量都相等時相等。
    """
    __slots__ = ('module_id', 'name')

    def __init__(self, module_id: ModuleId, name: str):
        object.__setattr__(self, 'module_id', module_id)
        object.__setattr__(self, 'name', name)

    def __setattr__(self, name, value):
        raise AttributeError(f"Cannot modify immutable instance attribute '{name}'")

    @property
    def types(self) -> FrozenSet['ActionType']:
        return frozenset((self,))

    @property
    def is_lifecycle(self) -> bool:
        return self.name in LIFECYCLE_NAMES

    def __eq__(self, other):
        if not isinstance(other, ActionType):
            return NotImplemented
        return self.module_id == other.module_id and self.name == other.name

    def __hash__(self):
        return hash((self.module_id, self.name))

    def __repr__(self):
        label = self.module_id.label or self.module_id.value
        return f"[{label}] {self.name}"


class Action(Generic[P]):
    """
    表示一個有類型和可選負載的動作。

    泛型參數:
        P: 負載的類型

    屬性:
        type: 動作的類型（ActionType）
        payload: 動作的負載數據（可選）
    """
    __slots__ = ('type', 'payload')

    def __init__(self, type: ActionType, payload: Optional[P] = None):
        super().__setattr__('type', type)
        super().__setattr__('payload', payload)

    def __setattr__(self, name, value):
        if name not in self.__slots__:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
        if hasattr(self, name):
            raise AttributeError(f"Cannot modify immutable instance attribute '{name}'")
        super().__setattr__(name, value)

    def __eq__(self, other):
        if not isinstance(other, Action):
            return False
        return self.type == other.type and self.payload == other.payload

    def __hash__(self):
        try:
            return hash((self.type, self.payload))
        except TypeError:
            # 不可哈希的負載只以類型參與哈希
            return hash(self.type)

    def __repr__(self):
        return f"Action(type='{self.type!r}', payload={self.payload!r})"


def _process_payload(payload: Any) -> Any:
    """
    處理 payload，將字典轉換為不可變結構。

    Args:
        payload: 原始 payload

    Returns:
        處理後的 payload
    """
    if isinstance(payload, dict):
        return ImmutableMap(payload)
    return payload


@overload
def create_action(module_id: ModuleId, name: str) -> ActionCreator[None]:
    ...


@overload
def create_action(module_id: ModuleId, name: str, prepare_fn: Callable[..., P]) -> ActionCreator[P]:
    ...


def create_action(module_id: ModuleId, name: str, prepare_fn: Optional[Callable[..., Any]] = None,
                  *, freeze: bool = True) -> ActionCreator[Any]:
    """
    創建一個綁定於模組的 Action 生成器函數。

    Args:
        module_id: Action 所屬的模組
        name: 模組內唯一的名稱，不可使用 "$" 開頭的保留名稱
        prepare_fn: 可選的預處理函數，用於在創建 Action 前處理輸入參數
        freeze: 是否將 dict 負載凍結為 immutables.Map

    Returns:
        一個可調用的函數，用於生成指定類型的 Action

    範例:
        >>> counter = define_module("counter")
        >>> increment = create_action(counter, "increment")
        >>> increment()  # Action(type='[counter] increment', payload=None)
        >>>
        >>> add = create_action(counter, "add", lambda amount: amount)
        >>> add(5)  # Action(type='[counter] add', payload=5)
    """
    if not isinstance(module_id, ModuleId):
        raise ActionError("Action creators must be bound to a ModuleId", name, module_id=module_id)
    if name.startswith("$"):
        raise ActionError(f"'{name}' is a reserved lifecycle action name", name, module_id=module_id)
    return _make_creator(ActionType(module_id, name), prepare_fn, freeze)


def _make_creator(action_type: ActionType, prepare_fn: Optional[Callable[..., Any]],
                  freeze: bool) -> ActionCreator[Any]:
    def action_creator(*args: Any, **kwargs: Any) -> Action[Any]:
        if prepare_fn:
            payload = prepare_fn(*args, **kwargs)
        elif len(args) == 1 and not kwargs:
            payload = args[0]
        elif args or kwargs:
            payload: Dict[Union[int, str], Any] = dict(zip(range(len(args)), args))
            payload.update(kwargs)
        else:
            # 無參數，無負載
            return Action(action_type)
        if freeze:
            payload = _process_payload(payload)
        return Action(action_type, payload)

    # 添加 type 屬性以便於識別與匹配
    action_creator.type = action_type  # type: ignore
    action_creator.types = action_type.types  # type: ignore
    action_creator.__name__ = action_type.name
    return action_creator


class LifecycleTypes(NamedTuple):
    """單一模組的五個生命週期 ActionType。"""

    init: ActionType
    mounted: ActionType
    remounted: ActionType
    unmounting: ActionType
    unmounted: ActionType


def lifecycle(module_id: ModuleId) -> LifecycleTypes:
    """返回指定模組的生命週期 ActionType，可直接用作匹配器。"""
    return LifecycleTypes(*(ActionType(module_id, name) for name in LIFECYCLE_NAMES))


def lifecycle_action(module_id: ModuleId, name: str) -> Action[None]:
    if name not in LIFECYCLE_NAMES:
        raise ActionError(f"'{name}' is not a lifecycle action", name, module_id=module_id)
    return Action(ActionType(module_id, name))


class TypeMatcher:
    """
    匹配一個或多個 ActionType 的謂詞。

    匹配器公開其接受的具體類型集合（types），
    reducer 與 epic 據此以類型建立索引，而不是逐一比對。
    """
    __slots__ = ('types',)

    def __init__(self, types: Iterable[ActionType]):
        object.__setattr__(self, 'types', frozenset(types))

    def __setattr__(self, name, value):
        raise AttributeError(f"Cannot modify immutable instance attribute '{name}'")

    def __call__(self, action_or_type: Union[Action[Any], ActionType]) -> bool:
        action_type = action_or_type.type if isinstance(action_or_type, Action) else action_or_type
        return action_type in self.types

    def __or__(self, other: Any) -> 'TypeMatcher':
        return of_type(self, other)

    def __eq__(self, other):
        return isinstance(other, TypeMatcher) and self.types == other.types

    def __hash__(self):
        return hash(self.types)

    def __repr__(self):
        return f"TypeMatcher({', '.join(sorted(repr(t) for t in self.types))})"


def of_type(*items: Any) -> TypeMatcher:
    """
    由 ActionType、Action 生成器、其他匹配器或它們的可迭代集合建立匹配器。

    範例:
        >>> matcher = of_type(increment, decrement)
        >>> matcher(increment())  # True
    """
    collected = set()
    for item in items:
        collected.update(_types_of(item))
    if not collected:
        raise ActionError("A matcher needs at least one action type", items)
    return TypeMatcher(collected)


def _types_of(item: Any) -> FrozenSet[ActionType]:
    if isinstance(item, ActionType):
        return item.types
    types = getattr(item, 'types', None)
    if isinstance(types, frozenset):
        return types
    if isinstance(item, (list, tuple, set, frozenset)):
        collected = set()
        for sub in item:
            collected.update(_types_of(sub))
        return frozenset(collected)
    raise ActionError(f"Cannot build an action matcher from {item!r}", item)
