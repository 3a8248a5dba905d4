"""
基於 reactivex 的副作用（Epic）模組。

Epic 由一組 (matcher, handler) 組成，建構出一個把共享 action 流
轉換為新 action 流的函數。每次處理函數調用都延遲到訂閱時才開始、
彼此獨立、可被取消，錯誤被捕獲後只送往錯誤通道，不會中斷共享流。
"""
import asyncio
import inspect
from collections.abc import Iterable, Mapping
from typing import Any, Callable, List, Optional, Tuple

import reactivex
from reactivex import Observable
from reactivex import operators as ops
from reactivex.subject import AsyncSubject

from .actions import Action, ModuleId, TypeMatcher, of_type
from .errors import EffectHandlerError, ErrorKind, InvalidEffectResultError

Handler = Callable[[Any, 'EffectContext', Action[Any]], Any]
StreamEffect = Callable[[Observable, 'EffectContext'], Observable]


class EffectContext:
    """
    傳給每個 effect 處理函數的上下文。

    屬性:
        module_id: 擁有此 epic 的模組
        action_stream: 完整的共享 action 流（所有模組），可用來等待之後的相關 action
        cancelled: 容器被停用時發出一次訊號的 Observable
    """

    def __init__(self, module_id: ModuleId, action_stream: Observable,
                 get_state: Callable[[ModuleId], Any],
                 report: Callable[[ErrorKind, Any, BaseException], None]):
        self.module_id = module_id
        self.action_stream = action_stream
        self._get_state = get_state
        self._report = report
        self._cancelled = AsyncSubject()
        self._is_cancelled = False
        self._in_flight = 0

    @property
    def cancelled(self) -> Observable:
        return self._cancelled

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def in_flight(self) -> int:
        """目前尚未結束的處理函數調用數量。"""
        return self._in_flight

    def get_state(self, module_id: Optional[ModuleId] = None) -> Any:
        """讀取指定模組（預設為自身）的當前狀態。"""
        return self._get_state(module_id if module_id is not None else self.module_id)

    def report(self, kind: ErrorKind, error: BaseException) -> None:
        self._report(kind, self.module_id, error)

    def cancel(self) -> None:
        """發出取消訊號；所有仍在進行中的調用都會被取消訂閱。"""
        if self._is_cancelled:
            return
        self._is_cancelled = True
        self._cancelled.on_next(True)
        self._cancelled.on_completed()

    def _begin(self) -> None:
        self._in_flight += 1

    def _end(self) -> None:
        self._in_flight -= 1


def _handler_name(handler: Callable[..., Any]) -> str:
    return getattr(handler, '__qualname__', None) or getattr(handler, '__name__', repr(handler))


class Epic:
    """
    副作用管線建構器。

    用法：
        epic = create_epic()

        @epic.on(fetch_user)
        async def load(payload, context, action):
            user = await api.get(payload)
            return user_loaded(user)

    處理函數可返回：None、單一 Action、有限的 Action 序列（list、tuple、生成器）、
    會得到 Action 或 None 的 awaitable，或 Action 的 Observable。
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self._entries: List[Tuple[TypeMatcher, Handler]] = []
        self._streams: List[StreamEffect] = []

    def on(self, matcher: Any, handler: Optional[Handler] = None):
        """
        註冊一個處理函數；省略 handler 時作為裝飾器使用。

        Args:
            matcher: 要處理的 action 類型
            handler: 接收 (payload, context, action) 的函數

        Returns:
            epic 本身（可鏈式呼叫），或裝飾器
        """
        type_matcher = of_type(matcher)
        if handler is None:
            def decorator(fn: Handler) -> Handler:
                self._entries.append((type_matcher, fn))
                return fn
            return decorator
        self._entries.append((type_matcher, handler))
        return self

    def stream(self, effect_fn: StreamEffect) -> StreamEffect:
        """
        註冊一個直接操作 action 流的 effect（裝飾器）。

        effect_fn 接收 (action_stream, context)，返回 Action 的 Observable。
        該流出錯時錯誤會被回報，且只結束這一個流。

        流 effect 一律在所有 on() 處理函數之後才訂閱 action 流，與註冊順序無關；
        同一個 action 觸發的輸出中，on() 處理函數的同步結果會先被分發。
        """
        self._streams.append(effect_fn)
        return effect_fn

    def merge(self, other: 'Epic') -> 'Epic':
        """將另一個 epic 的處理函數與流 effect 併入本 epic。"""
        self._entries.extend(other._entries)
        self._streams.extend(other._streams)
        return self

    @property
    def handled_types(self) -> frozenset:
        types = set()
        for matcher, _ in self._entries:
            types.update(matcher.types)
        return frozenset(types)

    def __call__(self, action_stream: Observable, context: EffectContext) -> Observable:
        """
        建構輸出流。

        Args:
            action_stream: 共享的 action 流
            context: 此次啟用的上下文

        Returns:
            合併所有處理函數輸出的 Observable，在取消時結束；
            訂閱順序為先 on() 處理函數、後 stream() 流 effect
        """
        sources = [
            action_stream.pipe(
                ops.filter(matcher),
                ops.flat_map(lambda action, handler=handler: self._invoke(handler, action, context)),
            )
            for matcher, handler in self._entries
        ]
        sources.extend(self._run_stream(effect_fn, action_stream, context) for effect_fn in self._streams)
        return reactivex.merge(*sources).pipe(ops.take_until(context.cancelled))

    def _invoke(self, handler: Handler, action: Action[Any], context: EffectContext) -> Observable:
        name = _handler_name(handler)

        def factory(_scheduler: Any = None) -> Observable:
            context._begin()
            try:
                result = handler(action.payload, context, action)
                output = self._to_observable(result, name, action, context)
            except Exception:
                context._end()
                raise
            return output.pipe(ops.finally_action(context._end))

        def catcher(err: Exception, _source: Observable) -> Observable:
            if isinstance(err, EffectHandlerError):
                error = err
            else:
                error = EffectHandlerError(f"Effect handler {name} failed: {err}", context.module_id,
                                           name, action, original=err)
                error.__cause__ = err
            context.report(ErrorKind.EFFECT, error)
            return reactivex.empty()

        return reactivex.defer(factory).pipe(
            ops.catch(catcher),
            ops.take_until(context.cancelled),
        )

    def _run_stream(self, effect_fn: StreamEffect, action_stream: Observable, context: EffectContext) -> Observable:
        name = _handler_name(effect_fn)

        def factory(_scheduler: Any = None) -> Observable:
            return effect_fn(action_stream, context).pipe(
                ops.flat_map(lambda item: self._validate(item, name, None, context)),
            )

        def catcher(err: Exception, _source: Observable) -> Observable:
            error = EffectHandlerError(f"Stream effect {name} failed: {err}", context.module_id, name, original=err)
            error.__cause__ = err
            context.report(ErrorKind.EFFECT, error)
            return reactivex.empty()

        return reactivex.defer(factory).pipe(ops.catch(catcher))

    def _validate(self, item: Any, name: str, action: Optional[Action[Any]], context: EffectContext) -> Observable:
        if item is None:
            return reactivex.empty()
        if isinstance(item, Action):
            return reactivex.just(item)
        return self._invalid(item, name, action, context)

    def _invalid(self, result: Any, name: str, action: Optional[Action[Any]], context: EffectContext) -> Observable:
        error = InvalidEffectResultError(
            f"Effect handler {name} returned {type(result).__name__}, expected an Action, "
            f"a sequence of Actions, an awaitable or an Observable",
            context.module_id, name, result, action,
        )
        context.report(ErrorKind.INVALID_EFFECT_RESULT, error)
        return reactivex.empty()

    def _to_observable(self, result: Any, name: str, action: Action[Any], context: EffectContext) -> Observable:
        if result is None:
            return reactivex.empty()
        if isinstance(result, Action):
            return reactivex.just(result)
        if isinstance(result, Observable):
            return result.pipe(ops.flat_map(lambda item: self._validate(item, name, action, context)))
        if inspect.isawaitable(result):
            return self._from_awaitable(result, name, action, context)
        if isinstance(result, Iterable) and not isinstance(result, (str, bytes, Mapping)):
            return reactivex.from_iterable(result).pipe(
                ops.flat_map(lambda item: self._validate(item, name, action, context)),
            )
        return self._invalid(result, name, action, context)

    def _from_awaitable(self, awaitable: Any, name: str, action: Action[Any], context: EffectContext) -> Observable:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise EffectHandlerError(
                f"Effect handler {name} returned an awaitable but no asyncio event loop is running",
                context.module_id, name, action,
            ) from None
        future = asyncio.ensure_future(awaitable, loop=loop)
        return reactivex.from_future(future).pipe(
            ops.flat_map(lambda item: self._validate(item, name, action, context)),
        )


def create_epic(*handlers: Tuple[Any, Handler], name: Optional[str] = None) -> Epic:
    """
    創建一個 Epic。

    Args:
        *handlers: 一系列 (matcher, handler) 元組
        name: 可選的名稱，用於日誌

    Returns:
        新的 Epic
    """
    epic = Epic(name)
    for matcher, handler in handlers:
        epic.on(matcher, handler)
    return epic


def filter_type(*matchers: Any) -> Callable[[Observable], Observable]:
    """reactivex 運算子：只保留匹配指定類型的 action。"""
    matcher = of_type(*matchers)
    return ops.filter(lambda action: isinstance(action, Action) and matcher(action))

