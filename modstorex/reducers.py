from typing import Any, Callable, Dict, FrozenSet, Generic, List, NamedTuple, Optional, Tuple, Union

from pydantic import BaseModel

from .actions import Action, ActionType, of_type
from .immutable_utils import ModelDraft, produce
from .types import S

Step = Callable[[Any, Action[Any]], Any]
Mutator = Callable[[Any, Action[Any]], Any]


class HandlerEntry(NamedTuple):
    """create_reducer 使用的處理器描述：kind 為 "on" 或 "replace"。"""

    kind: str
    matcher: Any
    fn: Callable[..., Any]


def on(matcher: Any, mutator: Mutator) -> HandlerEntry:
    """
    創建一個以草稿就地修改狀態的處理器描述。

    Args:
        matcher: ActionType、Action 生成器、TypeMatcher 或它們的集合
        mutator: 接收 (draft, action) 並直接修改 draft 的函數

    Returns:
        可傳給 create_reducer 的 HandlerEntry
    """
    return HandlerEntry("on", matcher, mutator)


def replace(matcher: Any, fn: Callable[[Any, Action[Any]], Any]) -> HandlerEntry:
    """
    創建一個直接返回全新狀態的處理器描述。

    Args:
        matcher: 要處理的 action 類型
        fn: 接收 (state, action) 並返回新狀態的函數

    Returns:
        可傳給 create_reducer 的 HandlerEntry
    """
    return HandlerEntry("replace", matcher, fn)


def _mutate_step(mutator: Mutator) -> Step:
    def step(state: Any, action: Action[Any]) -> Any:
        return produce(state, lambda draft: mutator(draft, action))
    step.__name__ = getattr(mutator, '__name__', 'mutator')
    return step


def _normalize_path(path: Union[Any, Tuple[Any, ...]]) -> Tuple[Any, ...]:
    if isinstance(path, tuple):
        if not path:
            raise ValueError("A nested reducer path cannot be empty")
        return path
    return (path,)


def _get(container: Any, key: Any) -> Any:
    if isinstance(container, (BaseModel, ModelDraft)):
        return getattr(container, key)
    return container[key]


def _put(container: Any, key: Any, value: Any) -> None:
    if isinstance(container, ModelDraft):
        setattr(container, key, value)
    else:
        container[key] = value


def get_in(state: Any, path: Tuple[Any, ...]) -> Any:
    """沿路徑讀取子狀態（映射鍵、序列索引或模型屬性）。"""
    for key in path:
        state = _get(state, key)
    return state


def set_in(state: Any, path: Tuple[Any, ...], value: Any) -> Any:
    """以結構共享的方式將路徑上的子狀態替換為 value。"""
    def recipe(draft: Any) -> None:
        target = draft
        for key in path[:-1]:
            target = _get(target, key)
        _put(target, path[-1], value)
    return produce(state, recipe)


class ChainedReducer(Generic[S]):
    """
    以鏈式 API 建立的 reducer。

    處理器以 ActionType 建立索引，未匹配的 action 直接返回原狀態對象，
    讓訂閱者能以 `is` 快速判斷「沒有變化」。

    範例:
        >>> reducer = create_reducer({"count": 0})
        >>> @reducer.on(increment)
        ... def _(draft, action):
        ...     draft["count"] += 1
    """

    def __init__(self, initial_state: S, name: Optional[str] = None):
        self.initial_state = initial_state
        self.name = name
        self._handlers: Dict[ActionType, List[Step]] = {}

    def _add(self, matcher: Any, step: Step) -> None:
        for action_type in of_type(matcher).types:
            self._handlers.setdefault(action_type, []).append(step)

    def on(self, matcher: Any, mutator: Optional[Mutator] = None):
        """
        註冊草稿式處理器；省略 mutator 時作為裝飾器使用。

        Args:
            matcher: 要處理的 action 類型
            mutator: 接收 (draft, action) 的函數

        Returns:
            reducer 本身（可鏈式呼叫），或裝飾器
        """
        if mutator is None:
            def decorator(fn: Mutator) -> Mutator:
                self._add(matcher, _mutate_step(fn))
                return fn
            return decorator
        self._add(matcher, _mutate_step(mutator))
        return self

    def replace(self, matcher: Any, fn: Optional[Callable[[Any, Action[Any]], Any]] = None):
        """
        註冊返回全新狀態的處理器；省略 fn 時作為裝飾器使用。
        """
        if fn is None:
            def decorator(inner: Callable[[Any, Action[Any]], Any]):
                self._add(matcher, inner)
                return inner
            return decorator
        self._add(matcher, fn)
        return self

    def nest(self, path: Union[Any, Tuple[Any, ...]], sub_reducer: 'ChainedReducer[Any]') -> 'ChainedReducer[S]':
        """
        將狀態中的一個子路徑委派給另一個獨立建立的 reducer。

        若初始狀態中尚無該路徑，會以子 reducer 的初始狀態補上。

        Args:
            path: 單一鍵或鍵的元組
            sub_reducer: 處理該子狀態的 reducer
        """
        keys = _normalize_path(path)
        try:
            get_in(self.initial_state, keys)
        except (KeyError, IndexError, AttributeError):
            self.initial_state = set_in(self.initial_state, keys, sub_reducer.initial_state)

        def step(state: Any, action: Action[Any]) -> Any:
            sub_state = get_in(state, keys)
            next_sub_state = sub_reducer(sub_state, action)
            if next_sub_state is sub_state:
                return state
            return set_in(state, keys, next_sub_state)

        for action_type in sub_reducer.handled_types:
            self._handlers.setdefault(action_type, []).append(step)
        return self

    def merge(self, other: 'ChainedReducer[Any]') -> 'ChainedReducer[S]':
        """將另一個 reducer 的處理器集合併入本 reducer（兩者必須作用於相同的狀態形狀）。"""
        for action_type, steps in other._handlers.items():
            self._handlers.setdefault(action_type, []).extend(steps)
        return self

    def handles(self, action_type: ActionType) -> bool:
        return action_type in self._handlers

    @property
    def handled_types(self) -> FrozenSet[ActionType]:
        return frozenset(self._handlers)

    def __call__(self, state: S, action: Optional[Action[Any]] = None) -> S:
        """
        根據 action 處理狀態變更。

        Args:
            state: 當前狀態
            action: 要處理的 action

        Returns:
            新的狀態，如果沒有對應的處理器則返回原狀態
        """
        if action is None:
            return state
        steps = self._handlers.get(action.type)
        if not steps:
            return state
        for step in steps:
            state = step(state, action)
        return state

    def __repr__(self):
        return f"ChainedReducer(name={self.name!r}, types={len(self._handlers)})"


def create_reducer(initial_state: S, *handlers: Union[HandlerEntry, Tuple[Any, Mutator], ChainedReducer[Any]],
                   name: Optional[str] = None) -> ChainedReducer[S]:
    """
    創建一個 reducer 函式，用於處理狀態變更。

    Args:
        initial_state: 初始狀態。
        *handlers: 一系列 on()/replace() 產生的描述、(matcher, mutator) 元組，
            或要合併的其他 ChainedReducer。
        name: 可選的名稱，用於日誌。

    Returns:
        一個 ChainedReducer，根據 action 的類型執行對應的處理邏輯。
    """
    reducer = ChainedReducer(initial_state, name)
    for handler in handlers:
        if isinstance(handler, ChainedReducer):
            reducer.merge(handler)
        elif isinstance(handler, HandlerEntry):
            if handler.kind == "replace":
                reducer.replace(handler.matcher, handler.fn)
            else:
                reducer.on(handler.matcher, handler.fn)
        elif isinstance(handler, tuple) and len(handler) == 2:
            # 如果 handler 是元組，則解構為匹配器與草稿式處理函式
            matcher, mutator = handler
            reducer.on(matcher, mutator)
        else:
            raise TypeError(f"Unsupported reducer handler: {handler!r}")
    return reducer

