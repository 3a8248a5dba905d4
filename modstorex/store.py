"""
ModStoreX 的調度核心。

Registry 擁有所有模組容器、共享的 action 流與延遲任務佇列：
dispatch 先同步套用每個已啟用容器的 reducer 並一次性通知訂閱者，
再把 action 排入 FIFO 佇列；佇列排空時 action 才進入 effect 管線，
effect 發出的 action 再次回到 dispatch，不會形成遞迴呼叫。
"""
import asyncio
import contextlib
import inspect
import itertools
import logging
import operator
from collections import deque
from functools import partial
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Sequence, Set, Union

import reactivex
from immutables import Map
from pydantic import ValidationError
from reactivex import Observable
from reactivex import operators as ops
from reactivex.disposable import Disposable
from reactivex.subject import Subject

from .actions import (
    Action, ModuleId, INIT, MOUNTED, REMOUNTED, UNMOUNTING, UNMOUNTED, lifecycle_action,
)
from .config import DEFAULT_CONFIG, StoreConfig
from .effects import EffectContext
from .errors import (
    ActionError, ConfigurationError, DuplicateRegistrationError, EffectHandlerError, ErrorHandler, ErrorKind,
    InvalidEffectResultError, ListenerError, NotInitializedError, StoreError, UpdateFunctionError,
    global_error_handler,
)
from .types import EffectPipeline, EqualityFn, ListenerCallback, Projector, Unsubscribe, UpdateFunction

logger = logging.getLogger(__name__)

_UNINITIALIZED = object()


class TaskQueue:
    """
    延遲域的 FIFO 任務佇列。

    任務在排空迴圈中逐一執行；排空期間加入的任務由同一個迴圈接續執行，
    因此 effect 連鎖再長也不會加深呼叫堆疊。任務拋出的異常只會被記錄，
    不會越過佇列邊界。
    """

    def __init__(self, scheduler: str = "asyncio", max_drain_tasks: Optional[int] = None):
        self.scheduler = scheduler
        self.max_drain_tasks = max_drain_tasks
        self._tasks: Deque[Callable[[], Any]] = deque()
        self._draining = False
        self._scheduled = False

    def __len__(self) -> int:
        return len(self._tasks)

    def enqueue(self, task: Callable[[], Any]) -> None:
        self._tasks.append(task)
        self._schedule()

    def _schedule(self) -> None:
        if self.scheduler != "asyncio" or self._scheduled or self._draining:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # 沒有執行中的事件迴圈：等待 flush() 或下一次在迴圈內的排入
            return
        self._scheduled = True
        loop.call_soon(self._scheduled_drain)

    def _scheduled_drain(self) -> None:
        self._scheduled = False
        self.drain()

    def drain(self, limit: Optional[int] = None) -> int:
        """
        執行佇列中的任務直到清空或達到上限。

        Args:
            limit: 本次最多執行的任務數，預設使用 max_drain_tasks

        Returns:
            實際執行的任務數
        """
        if self._draining:
            return 0
        limit = limit if limit is not None else self.max_drain_tasks
        self._draining = True
        count = 0
        try:
            while self._tasks:
                if limit is not None and count >= limit:
                    logger.warning("Drain stopped after %d tasks, %d still queued", count, len(self._tasks))
                    break
                task = self._tasks.popleft()
                count += 1
                try:
                    task()
                except Exception:
                    logger.exception("Deferred task %r failed", task)
        finally:
            self._draining = False
        if self._tasks:
            self._schedule()
        return count

    def clear(self) -> None:
        self._tasks.clear()


class Listener:
    """狀態訂閱者：依賴的模組、投影函數、相等函數、回調與上一次的投影值。"""

    _seq = itertools.count()

    __slots__ = ('module_ids', 'projector', 'equality_fn', 'callback', 'value', 'active', 'order')

    def __init__(self, module_ids: Sequence[ModuleId], projector: Projector, equality_fn: EqualityFn,
                 callback: ListenerCallback):
        self.module_ids = tuple(module_ids)
        self.projector = projector
        self.equality_fn = equality_fn
        self.callback = callback
        self.value: Any = None
        self.active = True
        self.order = next(Listener._seq)


class Container:
    """單一模組在 Registry 中的執行單位。"""

    def __init__(self, module_id: ModuleId):
        self.module_id = module_id
        self.state: Any = _UNINITIALIZED
        self.is_state_initialized = False
        self.is_enabled = False
        self.usage_count = 0
        self.update_fn: Optional[UpdateFunction] = None
        self.effect_pipeline: Optional[EffectPipeline] = None
        self.subscribers: Set[Listener] = set()
        self.context: Optional[EffectContext] = None
        self.subscription: Optional[Disposable] = None

    def handles(self, action: Action[Any]) -> bool:
        handles = getattr(self.update_fn, 'handles', None)
        if handles is None:
            return True
        return handles(action.type)

    def __repr__(self):
        return (f"Container({self.module_id!r}, enabled={self.is_enabled}, "
                f"usage={self.usage_count}, initialized={self.is_state_initialized})")


class ContainerHandle:
    """register_container 返回的句柄，供 enable / disable 使用。"""

    __slots__ = ('registry', 'module_id')

    def __init__(self, registry: 'Registry', module_id: ModuleId):
        self.registry = registry
        self.module_id = module_id

    def enable(self, is_hot_remount: bool = False) -> None:
        self.registry.enable(self, is_hot_remount=is_hot_remount)

    def disable(self) -> None:
        self.registry.disable(self)

    @contextlib.contextmanager
    def mounted(self, is_hot_remount: bool = False) -> Iterator['ContainerHandle']:
        """在 with 區塊內保持容器啟用。"""
        self.enable(is_hot_remount=is_hot_remount)
        try:
            yield self
        finally:
            self.disable()

    @property
    def state(self) -> Any:
        return self.registry.get_state(self.module_id)

    def __repr__(self):
        return f"ContainerHandle({self.module_id!r})"


def _as_ids(module_ids: Union[ModuleId, Sequence[ModuleId]]) -> List[ModuleId]:
    if isinstance(module_ids, ModuleId):
        return [module_ids]
    ids = list(module_ids)
    if not ids:
        raise StoreError("subscribe needs at least one module id", "subscribe")
    return ids


def _default_projector(*states: Any) -> Any:
    return states[0] if len(states) == 1 else states


class Registry:
    """
    調度協調器：管理模組容器、分發 action 並驅動 effect 管線。

    支援容器的動態註冊與啟用/停用（引用計數）、狀態訂閱與 middleware。
    """

    def __init__(self, config: Optional[StoreConfig] = None, error_handler: Optional[ErrorHandler] = None):
        """
        初始化一個空的 Registry。

        Args:
            config: 執行策略配置，預設為 StoreConfig()
            error_handler: 錯誤通道，預設為行程共用的 global_error_handler
        """
        self.config = config or DEFAULT_CONFIG
        self.error_handler = error_handler or global_error_handler
        self._containers: Dict[ModuleId, Container] = {}
        self._queue = TaskQueue(self.config.scheduler, self.config.max_drain_tasks)
        # 共享的 action 流，只在延遲域中發出
        self._action_subject: Subject = Subject()
        self._actions = self._action_subject.pipe(ops.as_observable())
        # 在同步階段中被要求的分發與啟用/停用轉換，依序在目前週期結束後執行
        self._pending: Deque[Callable[[], Any]] = deque()
        self._dispatching = False
        self._middleware: List[Any] = []
        self._dispatch_chain = self._apply_middleware_chain()

    # ———— 註冊與生命週期 ————

    def register_container(self, module_id: ModuleId, update_fn: UpdateFunction,
                           effect_pipeline: Optional[EffectPipeline] = None) -> ContainerHandle:
        """
        為模組安裝 reducer 與 effect 管線（容器不存在時建立）。

        以相同的函數重複註冊是冪等的；在未清除前註冊不同的函數會拋出
        DuplicateRegistrationError。

        Args:
            module_id: 模組識別碼
            update_fn: reducer，通常是 ChainedReducer
            effect_pipeline: 可選的 epic

        Returns:
            用於 enable / disable 的句柄
        """
        if not isinstance(module_id, ModuleId):
            raise StoreError(f"Expected a ModuleId, got {module_id!r}", "register_container")
        container = self._containers.get(module_id)
        if container is None:
            container = Container(module_id)
            self._containers[module_id] = container
        elif container.update_fn is not None:
            if container.update_fn is update_fn and container.effect_pipeline is effect_pipeline:
                return ContainerHandle(self, module_id)
            raise DuplicateRegistrationError(
                f"{module_id!r} already has a registered update function; clear it first", module_id,
            )
        container.update_fn = update_fn
        container.effect_pipeline = effect_pipeline
        logger.debug("Registered container %r", module_id)
        return ContainerHandle(self, module_id)

    def clear_registration(self, module_id: ModuleId) -> None:
        """移除模組的 reducer 與 effect 管線（狀態保留）；容器必須處於停用狀態。"""
        container = self._require(module_id, "clear_registration")
        if container.is_enabled:
            raise StoreError(f"{module_id!r} is still enabled", "clear_registration", usage_count=container.usage_count)
        container.update_fn = None
        container.effect_pipeline = None

    def enable(self, handle: Union[ContainerHandle, ModuleId], is_hot_remount: bool = False) -> None:
        """
        增加容器的使用計數並使其參與 reducer 與 effect 處理。

        第一次啟用時以 reducer 的 initial_state 初始化狀態，並依序分發
        $init 與 $mounted；已初始化的容器以 hot remount 啟用時只分發 $remounted，
        不重新初始化狀態；其他情況分發 $mounted。

        在另一次分發的同步階段中呼叫時，整個啟用轉換（含生命週期 action）
        會作為一個單位排在已等待的分發之後執行，期間不會穿插其他分發。

        Raises:
            StoreError: 容器不存在或尚未註冊 reducer
            Exception: effect 管線建構失敗時原樣拋出，容器維持未啟用
        """
        container = self._require(self._id_of(handle), "enable")
        if container.update_fn is None:
            raise StoreError(f"{container.module_id!r} has no registered update function", "enable")
        self._run(partial(self._enable_now, container, is_hot_remount))

    def _enable_now(self, container: Container, is_hot_remount: bool) -> None:
        if container.update_fn is None:
            raise StoreError(f"{container.module_id!r} has no registered update function", "enable")
        if not container.is_enabled:
            # 先建立 effect 管線；失敗時容器的計數與旗標都不變
            self._start_effects(container)
            container.is_enabled = True
        container.usage_count += 1
        logger.debug("Enabled %r (usage=%d, hot=%s)", container.module_id, container.usage_count, is_hot_remount)

        if not container.is_state_initialized:
            container.state = getattr(container.update_fn, 'initial_state', None)
            container.is_state_initialized = True
            self._dispatch_lifecycle(container.module_id, INIT, MOUNTED)
        elif is_hot_remount:
            self._dispatch_lifecycle(container.module_id, REMOUNTED)
        else:
            self._dispatch_lifecycle(container.module_id, MOUNTED)

    def disable(self, handle: Union[ContainerHandle, ModuleId]) -> None:
        """
        分發 $unmounting 並減少使用計數；計數歸零時分發 $unmounted，
        停止容器的 reducer 與 effect 處理並取消其進行中的 effect。狀態保留。

        與 enable 相同，在同步階段中呼叫時整個轉換延後為一個單位執行，
        容器自己的 reducer 仍會收到 $unmounting 與 $unmounted。
        """
        container = self._require(self._id_of(handle), "disable")
        if not container.is_enabled:
            raise StoreError(f"{container.module_id!r} is not enabled", "disable")
        self._run(partial(self._disable_now, container))

    def _disable_now(self, container: Container) -> None:
        module_id = container.module_id
        if not container.is_enabled:
            # 同一週期內排入了多次 disable
            raise StoreError(f"{module_id!r} is not enabled", "disable")

        if container.usage_count > 1:
            try:
                self._dispatch_lifecycle(module_id, UNMOUNTING)
            finally:
                container.usage_count -= 1
            logger.debug("Disabled %r once (usage=%d)", module_id, container.usage_count)
            return

        try:
            self._dispatch_lifecycle(module_id, UNMOUNTING, UNMOUNTED)
        finally:
            container.usage_count = 0
            container.is_enabled = False
            self._stop_effects(container)
            container.subscribers.clear()
        logger.debug("Disabled %r", module_id)

    def _dispatch_lifecycle(self, module_id: ModuleId, *names: str) -> None:
        """在目前的同步週期內依序分發生命週期 action；全部執行後才拋出第一個錯誤。"""
        first_error: Optional[BaseException] = None
        for name in names:
            try:
                self._dispatch_chain(lifecycle_action(module_id, name))
            except Exception as err:
                if first_error is None:
                    first_error = err
        if first_error is not None:
            raise first_error

    def reset_state(self, module_id: ModuleId) -> None:
        """將已停用容器的狀態清回未初始化；下一次啟用會重新分發 $init。"""
        container = self._require(module_id, "reset_state")
        if container.is_enabled:
            raise StoreError(f"{module_id!r} is still enabled", "reset_state")
        container.state = _UNINITIALIZED
        container.is_state_initialized = False

    # ———— 分發 ————

    def dispatch(self, action: Action[Any]) -> None:
        """
        分發一個動作。

        同步套用 reducer 並通知訂閱者後，將 action 排入延遲佇列交給 effect。
        在另一次分發的同步階段中呼叫時（例如從訂閱者回調），
        該 action 會在目前的分發完成後才處理。

        Args:
            action: 要分發的 Action 物件
        """
        if not isinstance(action, Action):
            raise ActionError(f"Only Action instances can be dispatched, got {action!r}", type(action).__name__)
        self._run(partial(self._dispatch_chain, action))

    def _run(self, step: Callable[[], Any]) -> None:
        """
        同步域的 trampoline：已在執行中時把 step 排到 _pending 尾端，
        否則依序執行 step 與所有等待中的步驟，最後拋出第一個錯誤。
        """
        if self._dispatching:
            self._pending.append(step)
            return

        self._dispatching = True
        first_error: Optional[BaseException] = None
        try:
            while True:
                try:
                    step()
                except Exception as err:
                    if first_error is None:
                        first_error = err
                if not self._pending:
                    break
                step = self._pending.popleft()
        finally:
            self._dispatching = False
        if first_error is not None:
            raise first_error

    def _dispatch_core(self, action: Action[Any]) -> Action[Any]:
        """
        核心的 dispatch 方法：reducer、通知、排入延遲佇列。

        Returns:
            傳入的 Action。
        """
        updated: List[Container] = []
        errors: List[UpdateFunctionError] = []
        for container in list(self._containers.values()):
            if not container.is_enabled or not container.handles(action):
                continue
            prev_state = container.state
            try:
                next_state = container.update_fn(prev_state, action)
            except Exception as err:
                error = UpdateFunctionError(
                    f"Update function of {container.module_id!r} failed on {action.type!r}: {err}",
                    container.module_id, action, err,
                )
                error.__cause__ = err
                errors.append(error)
                self._report(ErrorKind.UPDATE, container.module_id, error)
                continue
            if next_state is not prev_state:
                container.state = next_state
                updated.append(container)

        if updated:
            self._notify(updated)

        self._queue.enqueue(partial(self._action_subject.on_next, action))

        if errors and self.config.raise_update_errors:
            raise errors[0]
        return action

    def _notify(self, updated: List[Container]) -> None:
        candidates: Set[Listener] = set()
        for container in updated:
            candidates.update(container.subscribers)
        for listener in sorted(candidates, key=operator.attrgetter('order')):
            # 回調中取消訂閱的監聽者不再收到通知
            if not listener.active:
                continue
            try:
                next_value = self._project(listener)
                previous = listener.value
                if listener.equality_fn(previous, next_value):
                    continue
                listener.value = next_value
                listener.callback(next_value, previous)
            except Exception as err:
                error = ListenerError(f"Listener on {listener.module_ids!r} failed: {err}", listener.module_ids, err)
                error.__cause__ = err
                self._report(ErrorKind.LISTENER, listener.module_ids, error)

    def _dispatch_from_effect(self, container: Container, item: Any) -> None:
        if not isinstance(item, Action):
            error = InvalidEffectResultError(
                f"Effect pipeline of {container.module_id!r} emitted a non-Action value",
                container.module_id, repr(container.effect_pipeline), item,
            )
            self._report(ErrorKind.INVALID_EFFECT_RESULT, container.module_id, error)
            return
        try:
            self.dispatch(item)
        except UpdateFunctionError:
            # 已經透過錯誤通道回報
            logger.debug("Update error while dispatching effect output %r", item)
        except Exception:
            logger.exception("Dispatching effect output %r from %r failed", item, container.module_id)

    # ———— effect 管線 ————

    def _start_effects(self, container: Container) -> None:
        if container.effect_pipeline is None:
            return
        context = EffectContext(container.module_id, self._actions, self.get_state, self._report_deferred)
        try:
            output = container.effect_pipeline(self._actions, context)
            subscription = output.subscribe(
                on_next=partial(self._dispatch_from_effect, container),
                on_error=partial(self._on_pipeline_error, container),
            )
        except Exception:
            logger.error("Failed to start effect pipeline of %r", container.module_id)
            context.cancel()
            raise
        container.context = context
        container.subscription = subscription

    def _stop_effects(self, container: Container) -> None:
        if container.context is not None:
            container.context.cancel()
        if container.subscription is not None:
            container.subscription.dispose()
        container.context = None
        container.subscription = None

    def _on_pipeline_error(self, container: Container, err: Exception) -> None:
        error = EffectHandlerError(
            f"Effect pipeline of {container.module_id!r} terminated: {err}",
            container.module_id, repr(container.effect_pipeline), original=err,
        )
        error.__cause__ = err
        logger.warning("Effect pipeline of %r stopped after an error", container.module_id)
        self._report_deferred(ErrorKind.EFFECT, container.module_id, error)

    @property
    def actions(self) -> Observable:
        """共享的 action 流：每個 action 在延遲域中經過時發出。"""
        return self._actions

    @property
    def in_flight(self) -> int:
        """所有已啟用容器中仍在進行的 effect 調用數。"""
        return sum(c.context.in_flight for c in self._containers.values() if c.context is not None)

    @property
    def pending_tasks(self) -> int:
        return len(self._queue)

    def flush(self, max_tasks: Optional[int] = None) -> int:
        """
        同步排空延遲佇列，直到佇列清空或已執行 max_tasks 個任務為止。

        排空期間新加入的任務也會在同一次呼叫中執行，但同樣計入上限；
        達到上限時剩餘任務留在佇列中，可由 pending_tasks 查詢並再次 flush。

        Args:
            max_tasks: 本次最多執行的任務數；為 None 時使用配置的 max_drain_tasks，
                該值也為 None 時不設上限

        Returns:
            執行的任務數
        """
        return self._queue.drain(max_tasks)

    async def settle(self, timeout: Optional[float] = None) -> None:
        """
        等待直到延遲佇列清空且沒有進行中的 effect 調用。

        永遠不會結束的處理函數會讓此方法一直等待，請搭配 timeout 使用。
        """
        async def wait() -> None:
            while True:
                self.flush()
                await asyncio.sleep(0)
                if not self._queue and self.in_flight == 0:
                    return

        await asyncio.wait_for(wait(), timeout)

    # ———— 狀態與訂閱 ————

    def get_state(self, module_id: ModuleId) -> Any:
        """
        讀取模組的當前狀態。

        Raises:
            NotInitializedError: 容器不存在或狀態從未初始化
        """
        container = self._containers.get(module_id)
        if container is None or not container.is_state_initialized:
            raise NotInitializedError(f"State of {module_id!r} has not been initialized", module_id)
        return container.state

    def is_enabled(self, module_id: ModuleId) -> bool:
        container = self._containers.get(module_id)
        return bool(container and container.is_enabled)

    def usage_count(self, module_id: ModuleId) -> int:
        container = self._containers.get(module_id)
        return container.usage_count if container else 0

    def has_container(self, module_id: ModuleId) -> bool:
        return module_id in self._containers

    def snapshot(self) -> Map:
        """返回所有已初始化容器狀態的不可變映射 {ModuleId: state}。"""
        return Map({mid: c.state for mid, c in self._containers.items() if c.is_state_initialized})

    def _project(self, listener: Listener) -> Any:
        states = [self.get_state(mid) for mid in listener.module_ids]
        return listener.projector(*states)

    def subscribe(self, module_ids: Union[ModuleId, Sequence[ModuleId]], projector: Optional[Projector] = None,
                  equality_fn: Optional[EqualityFn] = None,
                  callback: Optional[ListenerCallback] = None) -> Unsubscribe:
        """
        訂閱一個或多個模組的狀態投影。

        訂閱時立即計算一次投影；之後每個觸及這些模組的通知週期都重新計算，
        只有 equality_fn(previous, next) 為 False 時才呼叫 callback(next, previous)。

        Args:
            module_ids: 依賴的模組
            projector: 接收各模組狀態並返回投影，預設返回狀態本身
            equality_fn: 比較新舊投影，預設為 `is`
            callback: 投影改變時的回調

        Returns:
            冪等的取消訂閱函數
        """
        if callback is None:
            raise StoreError("subscribe needs a callback", "subscribe")
        ids = _as_ids(module_ids)
        listener = Listener(ids, projector or _default_projector, equality_fn or operator.is_, callback)
        listener.value = self._project(listener)
        for mid in ids:
            self._require(mid, "subscribe").subscribers.add(listener)

        def unsubscribe() -> None:
            if not listener.active:
                return
            listener.active = False
            for mid in ids:
                container = self._containers.get(mid)
                if container is not None:
                    container.subscribers.discard(listener)

        return unsubscribe

    def select(self, module_ids: Union[ModuleId, Sequence[ModuleId]], projector: Optional[Projector] = None,
               equality_fn: Optional[EqualityFn] = None) -> Observable:
        """
        以 Observable 形式觀察狀態投影。

        Returns:
            發出 (previous, next) 元組的 Observable，取消訂閱時解除監聽
        """
        def on_subscribe(observer, _scheduler=None):
            unsubscribe = self.subscribe(
                module_ids, projector, equality_fn,
                lambda next_value, previous: observer.on_next((previous, next_value)),
            )
            return Disposable(unsubscribe)

        return reactivex.create(on_subscribe)

    # ———— 錯誤通道 ————

    def _report(self, kind: ErrorKind, module_id: Any, error: BaseException) -> None:
        if self.config.log_errors:
            logger.error("%s error in %r: %s", kind.value, module_id, error)
        self.error_handler.report(kind, module_id, error)

    def _report_deferred(self, kind: ErrorKind, module_id: Any, error: BaseException) -> None:
        self._queue.enqueue(partial(self._report, kind, module_id, error))

    # ———— Middleware ————

    def _apply_middleware_chain(self) -> Callable[[Action[Any]], Any]:
        """
        構建中介軟體鏈，將中介軟體按順序包裹在 dispatch 方法外層。

        Returns:
            包裹後的 dispatch 方法。
        """
        dispatch = self._dispatch_core
        for mw in reversed(self._middleware):
            if hasattr(mw, "on_next"):
                dispatch = self._wrap_obj_middleware(mw, dispatch)
            else:
                dispatch = mw(self)(dispatch)
        return dispatch

    def _wrap_obj_middleware(self, mw: Any, next_dispatch: Callable[[Action[Any]], Any]):
        def dispatch(action: Action[Any]):
            # 抓取 action 傳入前的舊狀態
            prev_state = self.snapshot()
            mw.on_next(action, prev_state)
            try:
                result = next_dispatch(action)
            except Exception as err:
                mw.on_error(err, action)
                raise
            mw.on_complete(self.snapshot(), action)
            return result

        return dispatch

    def apply_middleware(self, *middlewares: Any) -> None:
        """
        一次註冊多個中介軟體，並重建 dispatch 鏈。

        Args:
            *middlewares: 要註冊的中介軟體，可以是類或實例。
        """
        for m in middlewares:
            inst = m() if inspect.isclass(m) else m
            self._middleware.append(inst)
        self._dispatch_chain = self._apply_middleware_chain()

    # ———— 其他 ————

    def _require(self, module_id: ModuleId, operation: str) -> Container:
        container = self._containers.get(module_id)
        if container is None:
            raise StoreError(f"No container registered for {module_id!r}", operation)
        return container

    @staticmethod
    def _id_of(handle: Union[ContainerHandle, ModuleId]) -> ModuleId:
        return handle.module_id if isinstance(handle, ContainerHandle) else handle

    def teardown(self) -> None:
        """取消所有 effect 訂閱與監聽者，清空佇列並結束 action 流。"""
        for container in self._containers.values():
            self._stop_effects(container)
            for listener in container.subscribers:
                listener.active = False
            container.subscribers.clear()
        for mw in self._middleware:
            if hasattr(mw, "teardown"):
                mw.teardown()
        self._queue.clear()
        self._action_subject.on_completed()

    def __enter__(self) -> 'Registry':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()


def create_registry(config: Optional[StoreConfig] = None, error_handler: Optional[ErrorHandler] = None,
                    **overrides: Any) -> Registry:
    """
    創建一個新的 Registry 實例。

    Args:
        config: 完整配置；與 overrides 同時提供時以 overrides 覆寫
        error_handler: 錯誤通道
        **overrides: StoreConfig 欄位

    Returns:
        Registry: 新創建的 Registry 實例。
    """
    if overrides:
        base = config.model_dump() if config is not None else {}
        try:
            config = StoreConfig(**{**base, **overrides})
        except ValidationError as err:
            raise ConfigurationError(f"Invalid registry configuration: {err}", "Registry") from err
    return Registry(config, error_handler)


_default_registry: Optional[Registry] = None


def get_registry() -> Registry:
    """返回行程共用的 Registry，首次呼叫時建立。"""
    global _default_registry
    if _default_registry is None:
        _default_registry = Registry()
    return _default_registry


def reset_registry(config: Optional[StoreConfig] = None, error_handler: Optional[ErrorHandler] = None) -> Registry:
    """拆除行程共用的 Registry 並以新的實例取代（測試用）。"""
    global _default_registry
    if _default_registry is not None:
        _default_registry.teardown()
    _default_registry = Registry(config, error_handler)
    return _default_registry
