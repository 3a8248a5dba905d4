"""
ModStoreX 錯誤處理模組。

定義所有 ModStoreX 異常類別，以及集中式錯誤通道（ErrorHandler）。
同步域的錯誤（註冊、讀取狀態）直接拋給呼叫者；
reducer 與 effect 捕獲到的錯誤則透過錯誤通道回報。
"""

import logging
import traceback
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class ModStoreXError(Exception):
    """所有 ModStoreX 異常的基礎類。"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.traceback = "".join(traceback.format_stack(limit=8)[:-1])

    def to_dict(self) -> Dict[str, Any]:
        """
        將異常轉換為可序列化的字典。

        Returns:
            包含錯誤類型、訊息與細節的字典
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": {k: repr(v) for k, v in self.details.items()},
            "traceback": self.traceback,
        }

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class ActionError(ModStoreXError):
    """與 Action 定義相關的錯誤，例如使用保留的生命週期名稱。"""

    def __init__(self, message: str, action_type: Any, payload: Any = None, **kwargs: Any) -> None:
        details = {"action_type": action_type, **kwargs}
        if payload is not None:
            details["payload"] = payload
        super().__init__(message, details)
        self.action_type = action_type


class UpdateFunctionError(ModStoreXError):
    """reducer 在處理 action 時拋出的錯誤；只放棄該容器這一次的更新。"""

    def __init__(self, message: str, module_id: Any, action: Any, original: BaseException, **kwargs: Any) -> None:
        super().__init__(message, {"module_id": module_id, "action": action, **kwargs})
        self.module_id = module_id
        self.action = action
        self.original = original


class EffectHandlerError(ModStoreXError):
    """effect 處理函數在執行中拋出或拒絕的錯誤；只放棄該次調用。"""

    def __init__(self, message: str, module_id: Any, handler_name: str, action: Any = None,
                 original: Optional[BaseException] = None, **kwargs: Any) -> None:
        super().__init__(message, {"module_id": module_id, "handler": handler_name, "action": action, **kwargs})
        self.module_id = module_id
        self.handler_name = handler_name
        self.action = action
        self.original = original


class InvalidEffectResultError(EffectHandlerError):
    """effect 處理函數返回了不被允許的值，視為沒有任何輸出。"""

    def __init__(self, message: str, module_id: Any, handler_name: str, result: Any, action: Any = None) -> None:
        super().__init__(message, module_id, handler_name, action, result=result)
        self.result = result


class NotInitializedError(ModStoreXError):
    """在容器狀態初始化前讀取狀態。"""

    def __init__(self, message: str, module_id: Any) -> None:
        super().__init__(message, {"module_id": module_id})
        self.module_id = module_id


class DuplicateRegistrationError(ModStoreXError):
    """同一個 ModuleId 在未清除前被註冊了第二組處理器。"""

    def __init__(self, message: str, module_id: Any) -> None:
        super().__init__(message, {"module_id": module_id})
        self.module_id = module_id


class ListenerError(ModStoreXError):
    """訂閱者的回調或投影函數拋出的錯誤。"""

    def __init__(self, message: str, module_ids: Any, original: BaseException) -> None:
        super().__init__(message, {"module_ids": module_ids})
        self.original = original


class StoreError(ModStoreXError):
    """與 Registry 操作相關的錯誤，例如對未啟用的容器呼叫 disable。"""

    def __init__(self, message: str, operation: str, **kwargs: Any) -> None:
        super().__init__(message, {"operation": operation, **kwargs})
        self.operation = operation


class ConfigurationError(ModStoreXError):
    """配置相關的錯誤。"""

    def __init__(self, message: str, component: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        details = {"component": component, **kwargs}
        if config_key is not None:
            details["config_key"] = config_key
        super().__init__(message, details)


class ErrorKind(str, Enum):
    """錯誤通道回報的錯誤類別。"""

    UPDATE = "update"
    EFFECT = "effect"
    INVALID_EFFECT_RESULT = "invalid_effect_result"
    LISTENER = "listener"


class ErrorReport(NamedTuple):
    """錯誤通道傳遞的記錄：(kind, module_id, error)。"""

    kind: ErrorKind
    module_id: Any
    error: BaseException


class ErrorHandler:
    """
    集中式錯誤處理器，作為整個行程的錯誤通道。

    reducer、effect 與 listener 的錯誤在被捕獲後會送到這裡，
    外部協作者（例如日誌層）透過 register_handler 掛上監聽者。
    """

    def __init__(self) -> None:
        self.handlers: List[Callable[[ErrorReport], None]] = []

    def register_handler(self, handler: Callable[[ErrorReport], None]) -> Callable[[], None]:
        """
        註冊錯誤監聽者。

        Args:
            handler: 接收 ErrorReport 的回調

        Returns:
            取消註冊的函數，可重複呼叫
        """
        self.handlers.append(handler)

        def unregister() -> None:
            if handler in self.handlers:
                self.handlers.remove(handler)

        return unregister

    def report(self, kind: ErrorKind, module_id: Any, error: BaseException) -> None:
        """
        將一個已捕獲的錯誤送往所有監聽者。

        監聽者自身拋出的異常只會被記錄，不會再往外傳播。
        """
        record = ErrorReport(kind, module_id, error)
        for handler in list(self.handlers):
            try:
                handler(record)
            except Exception:
                logger.exception("error channel handler %r failed", handler)

    def clear(self) -> None:
        self.handlers.clear()


# 單例錯誤處理器
global_error_handler = ErrorHandler()
