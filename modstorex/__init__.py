"""
ModStoreX 庫的主要入口點。

模組化的反應式狀態管理：每個模組註冊自己的狀態容器、reducer 與 epic，
Registry 負責同步套用 reducer、通知訂閱者，並以延遲佇列驅動副作用。
"""

from .errors import (
    ModStoreXError, ActionError, UpdateFunctionError, EffectHandlerError,
    InvalidEffectResultError, NotInitializedError, DuplicateRegistrationError,
    ListenerError, StoreError, ConfigurationError,
    ErrorKind, ErrorReport, ErrorHandler, global_error_handler,
)
from .actions import (
    Action, ActionType, ModuleId, TypeMatcher, LifecycleTypes,
    define_module, create_action, of_type, lifecycle, LIFECYCLE_NAMES,
)
from .config import StoreConfig
from .immutable_utils import produce, original, current, is_draft
from .reducers import ChainedReducer, create_reducer, on, replace, get_in, set_in
from .effects import Epic, EffectContext, create_epic, filter_type
from .store import (
    Registry, ContainerHandle, TaskQueue,
    create_registry, get_registry, reset_registry,
)
from .store_selectors import create_selector, shallow_equal
from .middleware import BaseMiddleware, LoggerMiddleware, ActionHistoryMiddleware
from .module import Module, create_module

__version__ = "0.1.0"

# 匯出所有公開 API
__all__ = [
    # Errors
    "ModStoreXError", "ActionError", "UpdateFunctionError", "EffectHandlerError",
    "InvalidEffectResultError", "NotInitializedError", "DuplicateRegistrationError",
    "ListenerError", "StoreError", "ConfigurationError",
    "ErrorKind", "ErrorReport", "ErrorHandler", "global_error_handler",

    # Actions
    "Action", "ActionType", "ModuleId", "TypeMatcher", "LifecycleTypes",
    "define_module", "create_action", "of_type", "lifecycle", "LIFECYCLE_NAMES",

    # Config
    "StoreConfig",

    # Immutable Utils
    "produce", "original", "current", "is_draft",

    # Reducers
    "ChainedReducer", "create_reducer", "on", "replace", "get_in", "set_in",

    # Effects
    "Epic", "EffectContext", "create_epic", "filter_type",

    # Registry
    "Registry", "ContainerHandle", "TaskQueue",
    "create_registry", "get_registry", "reset_registry",

    # Selectors
    "create_selector", "shallow_equal",

    # Middleware
    "BaseMiddleware", "LoggerMiddleware", "ActionHistoryMiddleware",

    # Modules
    "Module", "create_module",
]
