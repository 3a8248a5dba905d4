import functools
from typing import Any, Callable, List, Optional, Tuple


def create_selector(*selectors: Callable[..., Any], result_fn: Optional[Callable[..., Any]] = None,
                    deep: bool = False) -> Callable[..., Any]:
    """
    創建一個記憶化的投影函數，可直接作為 subscribe 的 projector。

    輸入選擇器接收與投影函數相同的參數（各模組的狀態），
    只有當任一輸入值改變時才重新執行 result_fn。

    Args:
        *selectors: 多個輸入選擇器，從狀態中提取對應的值
        result_fn: 處理輸出結果的函數，將多個選擇器的輸出進行處理
        deep: 是否以深度比較判斷輸入是否改變（預設以 `is` 比較）

    Returns:
        經過快取優化的 selector 函數
    """
    # 如果沒有 result_fn 且只有一個選擇器，直接返回該選擇器
    if not result_fn and len(selectors) == 1:
        return selectors[0]

    # 如果沒有提供 result_fn，預設為返回所有輸入值的元組
    if not result_fn:
        result_fn = lambda *args: args

    last_inputs: List[Optional[Tuple[Any, ...]]] = [None]
    last_result: List[Any] = [None]

    @functools.wraps(result_fn)
    def selector(*states: Any) -> Any:
        inputs = tuple(select(*states) for select in selectors)
        cached = last_inputs[0]
        if cached is not None and len(cached) == len(inputs):
            if deep:
                matched = all(_safe_deep_equals(a, b) for a, b in zip(inputs, cached))
            else:
                matched = all(a is b for a, b in zip(inputs, cached))
            if matched:
                return last_result[0]
        result = result_fn(*inputs)
        last_inputs[0] = inputs
        last_result[0] = result
        return result

    def cache_clear() -> None:
        last_inputs[0] = None
        last_result[0] = None

    selector.cache_clear = cache_clear  # type: ignore
    return selector


def shallow_equal(a: Any, b: Any) -> bool:
    """
    淺比較：同一對象，或相同類型的映射/序列且每個元素都是同一對象。

    適合作為 subscribe 的 equality_fn，投影每次返回新的 dict/tuple 時避免多餘的通知。
    """
    if a is b:
        return True
    if type(a) is not type(b):
        return False
    if hasattr(a, 'keys') and hasattr(a, '__getitem__'):
        if len(a) != len(b):
            return False
        return all(key in b and a[key] is b[key] for key in a.keys())
    if isinstance(a, (list, tuple)):
        return len(a) == len(b) and all(x is y for x, y in zip(a, b))
    return False


def _safe_deep_equals(a: Any, b: Any) -> bool:
    """安全的深度比較，出錯時返回False"""
    try:
        if a is b:
            return True
        if type(a) != type(b):
            return False
        if isinstance(a, (str, int, float, bool, type(None))):
            return a == b
        if isinstance(a, dict):
            if len(a) != len(b):
                return False
            for key in a:
                if key not in b or not _safe_deep_equals(a[key], b[key]):
                    return False
            return True
        if isinstance(a, (list, tuple)):
            if len(a) != len(b):
                return False
            return all(_safe_deep_equals(x, y) for x, y in zip(a, b))
        return a == b
    except Exception:
        return False
