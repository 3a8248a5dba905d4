"""
計數器範例：模組、草稿式 reducer、非同步 epic、選擇器與日誌中介。

執行：python examples/counter_example.py
"""
import asyncio
import logging
import time
from typing import Optional

from pydantic import BaseModel

from modstorex import LoggerMiddleware, create_module, create_registry, create_selector, shallow_equal


# ====== Model Definition ======
class CounterState(BaseModel):
    count: int = 0
    loading: bool = False
    error: Optional[str] = None
    last_updated: Optional[float] = None


registry = create_registry(log_errors=True)
counter = create_module("counter", CounterState(), registry)

increment, decrement, load_count_request = counter.actions("increment", "decrement", "load_count_request")
increment_by = counter.action("increment_by", lambda amount: amount)
reset = counter.action("reset", lambda value=0: value)
load_count_success = counter.action("load_count_success", lambda value: value)
load_count_failure = counter.action("load_count_failure", lambda message: message)


# ====== Reducer ======
@counter.reducer.on(increment)
def _increment(draft, action):
    draft.count += 1
    draft.last_updated = time.time()


@counter.reducer.on(decrement)
def _decrement(draft, action):
    draft.count -= 1
    draft.last_updated = time.time()


@counter.reducer.on([reset, load_count_success])
def _set_count(draft, action):
    draft.count = action.payload
    draft.loading = False
    draft.last_updated = time.time()


@counter.reducer.on(increment_by)
def _increment_by(draft, action):
    draft.count += action.payload
    draft.last_updated = time.time()


@counter.reducer.on(load_count_request)
def _loading(draft, action):
    draft.loading = True
    draft.error = None


@counter.reducer.on(load_count_failure)
def _failed(draft, action):
    draft.loading = False
    draft.error = action.payload


# ====== Effects ======
@counter.epic.on(load_count_request)
async def load_count(payload, context, action):
    """模擬從 API 載入數據，成功後 dispatch load_count_success。"""
    await asyncio.sleep(0.5)
    return load_count_success(42)


# ====== Selectors ======
get_count = create_selector(lambda state: state.count)
get_counter_info = create_selector(
    lambda state: state.count,
    lambda state: state.last_updated,
    result_fn=lambda count, last_updated: {"count": count, "last_updated": last_updated},
)


async def main() -> None:
    registry.apply_middleware(LoggerMiddleware(level=logging.INFO, log_state=False))
    with counter.mount():
        counter.subscribe(lambda value, previous: print(f"計數變化: {previous} -> {value}"), get_count)
        counter.subscribe(lambda info, _: print(f"計數器信息更新: {info}"), get_counter_info, shallow_equal)

        print("\n==== 開始測試基本操作 ====")
        registry.dispatch(increment())
        registry.dispatch(increment_by(5))
        registry.dispatch(decrement())
        registry.dispatch(reset(10))
        registry.dispatch(increment_by(99))

        print("\n==== 開始測試異步操作 ====")
        registry.dispatch(load_count_request())
        await registry.settle(timeout=5)

        print("\n==== 最終狀態 ====")
        print(counter.state)
    registry.teardown()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")
    asyncio.run(main())
