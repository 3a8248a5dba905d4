"""
ModStoreX 共用型別定義。

集中放置 TypeVar 與 Protocol，避免模組之間的循環匯入。
"""

from typing import TYPE_CHECKING, Any, Callable, TypeVar

from typing_extensions import Protocol

if TYPE_CHECKING:
    from reactivex import Observable
    from .actions import Action, ActionType
    from .effects import EffectContext

S = TypeVar("S")  # 狀態類型
P = TypeVar("P")  # 負載類型


class ActionCreator(Protocol[P]):
    """可呼叫的 Action 生成器，帶有 type 屬性。"""

    type: "ActionType"

    def __call__(self, *args: Any, **kwargs: Any) -> "Action[P]": ...


class UpdateFunction(Protocol):
    """reducer：純函數 (state, action) -> state。ChainedReducer 另外提供 handles()。"""

    def __call__(self, state: Any, action: "Action[Any]") -> Any: ...


class EffectPipeline(Protocol):
    """epic：把共享的 action 流轉換為新的 action 流。"""

    def __call__(self, action_stream: "Observable", context: "EffectContext") -> "Observable": ...


Projector = Callable[..., Any]
EqualityFn = Callable[[Any, Any], bool]
ListenerCallback = Callable[[Any, Any], None]
Unsubscribe = Callable[[], None]
