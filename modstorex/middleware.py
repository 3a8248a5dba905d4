"""
基於 ModStoreX 的中介軟體定義模組。

中介軟體包裹 Registry 的同步分發流程，可在 reducer 執行前後與出錯時
插入自定義邏輯。物件型中介軟體實作 on_next / on_complete / on_error；
函數型中介軟體則是 `registry -> next_dispatch -> dispatch` 的工廠。
"""

import logging
import time
from typing import Any, Callable, List, Optional, Tuple

from .actions import Action

logger = logging.getLogger(__name__)

NextDispatch = Callable[[Action[Any]], Any]


# ———— Base Middleware ————
class BaseMiddleware:
    """
    基礎中介類，定義所有中介可能實現的鉤子。
    """

    def on_next(self, action: Action[Any], prev_state: Any) -> None:
        """
        在 action 發送給 reducer 之前調用。

        Args:
            action: 正在 dispatch 的 Action
            prev_state: dispatch 之前的狀態快照 {ModuleId: state}
        """
        pass

    def on_complete(self, next_state: Any, action: Action[Any]) -> None:
        """
        在 reducer 與訂閱者通知完成、action 排入 effect 佇列之後調用。

        Args:
            next_state: dispatch 之後的狀態快照
            action: 剛剛 dispatch 的 Action
        """
        pass

    def on_error(self, error: Exception, action: Action[Any]) -> None:
        """
        如果 dispatch 過程中拋出異常，則調用此鉤子。

        Args:
            error: 拋出的異常
            action: 導致異常的 Action
        """
        pass

    def teardown(self) -> None:
        """當 Registry 清理資源時調用。"""
        pass


# ———— LoggerMiddleware ————
class LoggerMiddleware(BaseMiddleware):
    """
    日誌中介，記錄每個 action 分發前後的狀態與耗時。

    使用場景:
    - 偵錯時需要觀察每次 state 的變化。
    - 確保 action 的執行順序正確。
    """

    def __init__(self, level: int = logging.DEBUG, log_state: bool = True,
                 log: Optional[logging.Logger] = None) -> None:
        self.level = level
        self.log_state = log_state
        self.log = log or logger
        self._started: List[float] = []

    def on_next(self, action: Action[Any], prev_state: Any) -> None:
        self._started.append(time.perf_counter())
        self.log.log(self.level, "dispatching %r", action)
        if self.log_state:
            self.log.log(self.level, "state before %r: %s", action.type, dict(prev_state.items()))

    def on_complete(self, next_state: Any, action: Action[Any]) -> None:
        elapsed_ms = (time.perf_counter() - self._started.pop()) * 1000 if self._started else 0.0
        if self.log_state:
            self.log.log(self.level, "state after %r: %s", action.type, dict(next_state.items()))
        self.log.log(self.level, "dispatched %r in %.2fms", action.type, elapsed_ms)

    def on_error(self, error: Exception, action: Action[Any]) -> None:
        if self._started:
            self._started.pop()
        self.log.error("error in %r: %s", action.type, error)


# ———— ActionHistoryMiddleware ————
class ActionHistoryMiddleware(BaseMiddleware):
    """
    記錄最近分發過的 actions（含生命週期 action），供測試與偵錯回放。
    """

    def __init__(self, limit: Optional[int] = None) -> None:
        self.limit = limit
        self.history: List[Tuple[float, Action[Any]]] = []

    def on_complete(self, next_state: Any, action: Action[Any]) -> None:
        self.history.append((time.time(), action))
        if self.limit is not None and len(self.history) > self.limit:
            del self.history[: len(self.history) - self.limit]

    @property
    def actions(self) -> List[Action[Any]]:
        return [action for _, action in self.history]

    def teardown(self) -> None:
        self.history.clear()
