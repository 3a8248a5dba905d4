"""
模組的便利封裝。

create_module 一次配發 ModuleId，並把 action 生成器、reducer、epic
與掛載生命週期綁在同一個對象上。同一個 Module 的多次掛載共享同一個容器
（引用計數）；需要彼此獨立的狀態時，請為每個實例呼叫一次 create_module。
"""
import contextlib
from typing import Any, Callable, Generic, Iterator, Optional, Tuple

from .actions import ModuleId, LifecycleTypes, create_action, define_module, lifecycle
from .effects import Epic
from .reducers import ChainedReducer
from .store import ContainerHandle, Registry, get_registry
from .types import S, ActionCreator, EqualityFn, ListenerCallback, Projector, Unsubscribe


class Module(Generic[S]):
    """
    一個模組定義：識別碼、reducer、epic 與生命週期 action。

    範例:
        >>> counter = create_module("counter", {"count": 0})
        >>> increment = counter.action("increment")
        >>> @counter.reducer.on(increment)
        ... def _(draft, action):
        ...     draft["count"] += 1
        >>> with counter.mount():
        ...     counter.registry.dispatch(increment())
    """

    def __init__(self, label: str, initial_state: S, registry: Optional[Registry] = None):
        self.id: ModuleId = define_module(label)
        self.label = label
        self.reducer: ChainedReducer[S] = ChainedReducer(initial_state, name=label)
        self.epic = Epic(name=label)
        self._registry = registry

    @property
    def registry(self) -> Registry:
        # 未指定時於使用當下解析，reset_registry() 之後仍指向新的實例
        return self._registry if self._registry is not None else get_registry()

    @property
    def lifecycle(self) -> LifecycleTypes:
        return lifecycle(self.id)

    def action(self, name: str, prepare_fn: Optional[Callable[..., Any]] = None) -> ActionCreator[Any]:
        """創建屬於此模組的 Action 生成器。"""
        return create_action(self.id, name, prepare_fn)

    def actions(self, *names: str) -> Tuple[ActionCreator[Any], ...]:
        """一次創建多個無預處理的 Action 生成器。"""
        return tuple(create_action(self.id, name) for name in names)

    def register(self) -> ContainerHandle:
        return self.registry.register_container(self.id, self.reducer, self.epic)

    def enable(self, is_hot_remount: bool = False) -> ContainerHandle:
        handle = self.register()
        handle.enable(is_hot_remount=is_hot_remount)
        return handle

    def disable(self) -> None:
        self.registry.disable(self.id)

    @contextlib.contextmanager
    def mount(self, is_hot_remount: bool = False) -> Iterator[ContainerHandle]:
        """註冊並在 with 區塊內保持模組啟用，離開時停用。"""
        with self.register().mounted(is_hot_remount=is_hot_remount) as handle:
            yield handle

    @property
    def state(self) -> S:
        return self.registry.get_state(self.id)

    def subscribe(self, callback: ListenerCallback, projector: Optional[Projector] = None,
                  equality_fn: Optional[EqualityFn] = None) -> Unsubscribe:
        """訂閱此模組狀態（或其投影）的變化。"""
        return self.registry.subscribe(self.id, projector, equality_fn, callback)

    def __repr__(self):
        return f"Module({self.label!r}, {self.id!r})"


def create_module(label: str, initial_state: S, registry: Optional[Registry] = None) -> Module[S]:
    """
    創建一個模組。

    Args:
        label: 模組名稱，用於日誌
        initial_state: 第一次啟用時的狀態
        registry: 綁定的 Registry，預設使用行程共用的實例

    Returns:
        新的 Module
    """
    return Module(label, initial_state, registry)
