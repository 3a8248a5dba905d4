# modstorex/immutable_utils.py
"""
寫入時複製（copy-on-write）的草稿工具。

produce(base, recipe) 把 base 包成草稿交給 recipe 就地修改，
結束後產生一個新的根值：被修改的路徑會被淺拷貝，
未觸碰的子結構與原狀態共享同一個對象；沒有任何修改時直接返回 base 本身。

支援的結構：dict、list、tuple、immutables.Map 與 Pydantic 模型；
其他值視為葉節點。
"""
from collections.abc import MutableMapping, MutableSequence
from typing import Any, Callable, Dict, Iterator, TypeVar

from immutables import Map
from pydantic import BaseModel

T = TypeVar('T')

_NOTHING = object()


def is_draftable(value: Any) -> bool:
    """判斷值是否能被包成草稿（僅限精確的內建容器類型、Map 與 Pydantic 模型）。"""
    return type(value) in (dict, list, tuple) or isinstance(value, (Map, BaseModel))


def is_draft(value: Any) -> bool:
    return isinstance(value, Draft)


def create_draft(base: Any) -> 'Draft':
    if isinstance(base, BaseModel):
        return ModelDraft(base)
    if isinstance(base, Map) or type(base) is dict:
        return DictDraft(base)
    if type(base) in (list, tuple):
        return ListDraft(base)
    raise TypeError(f"{type(base).__name__} cannot be drafted")


class Draft:
    """
    草稿基礎類。

    _copy 是延遲建立的可變工作副本；_children 記錄讀取過的子草稿，
    finalize 時子草稿先行定稿，只有真的改變時才寫回工作副本。
    """
    __slots__ = ('_base', '_copy', '_children', '_modified', '_result', '_revoked')

    def __init__(self, base: Any):
        object.__setattr__(self, '_base', base)
        object.__setattr__(self, '_copy', None)
        object.__setattr__(self, '_children', {})
        object.__setattr__(self, '_modified', False)
        object.__setattr__(self, '_result', _NOTHING)
        object.__setattr__(self, '_revoked', False)

    # ---- 子類實作 ----
    def _clone_base(self) -> Any:
        raise NotImplementedError

    def _clone(self, work: Any) -> Any:
        raise NotImplementedError

    def _build(self, work: Any) -> Any:
        raise NotImplementedError

    def _source(self) -> Any:
        raise NotImplementedError

    # ---- 共用邏輯 ----
    def _check(self) -> None:
        if self._revoked:
            raise RuntimeError("Draft was used after its producer finished")

    def _ensure_copy(self) -> Any:
        if self._copy is None:
            object.__setattr__(self, '_copy', self._clone_base())
        return self._copy

    def _mark_modified(self) -> None:
        self._ensure_copy()
        object.__setattr__(self, '_modified', True)

    def _wrap(self, key: Any, value: Any) -> Any:
        child = self._children.get(key)
        if child is not None:
            return child
        if is_draftable(value):
            child = create_draft(value)
            self._children[key] = child
            return child
        return value

    def _is_dirty(self) -> bool:
        return self._modified or any(child._is_dirty() for child in self._children.values())

    def _flush_children(self) -> None:
        """把子草稿定稿後寫回工作副本；結構性修改（插入、刪除）前必須呼叫。"""
        if not self._children:
            return
        work = self._ensure_copy()
        for key, child in self._children.items():
            value = child._finalize()
            if value is not child._base:
                self._modified = True
            work[key] = value
        self._children.clear()

    def _finalize(self) -> Any:
        if self._result is not _NOTHING:
            return self._result
        changed = self._modified
        finals = {}
        for key, child in self._children.items():
            value = child._finalize()
            finals[key] = value
            if value is not child._base:
                changed = True
        if not changed:
            result = self._base
        else:
            work = self._ensure_copy()
            for key, value in finals.items():
                work[key] = value
            result = self._build(work)
        object.__setattr__(self, '_result', result)
        object.__setattr__(self, '_revoked', True)
        return result

    def _current(self) -> Any:
        """產生當下的快照，不結束草稿。"""
        if self._copy is None and not self._children:
            return self._base
        work = self._clone(self._copy) if self._copy is not None else self._clone_base()
        for key, child in self._children.items():
            work[key] = child._current()
        return self._build(work)

    def _revoke(self) -> None:
        object.__setattr__(self, '_revoked', True)
        for child in self._children.values():
            child._revoke()

    def __eq__(self, other):
        if isinstance(other, Draft):
            other = other._current()
        return self._current() == other

    __hash__ = None  # type: ignore

    def __repr__(self):
        return f"{type(self).__name__}({self._current()!r})"


class DictDraft(Draft, MutableMapping):
    """dict 與 immutables.Map 的草稿。Map 以 dict 工作副本累積修改，定稿時重建為 Map。"""
    __slots__ = ()

    def _clone_base(self) -> Dict[Any, Any]:
        return dict(self._base.items())

    def _clone(self, work: Dict[Any, Any]) -> Dict[Any, Any]:
        return dict(work)

    def _build(self, work: Dict[Any, Any]) -> Any:
        if isinstance(self._base, Map):
            return Map(work)
        return work

    def _source(self) -> Any:
        return self._copy if self._copy is not None else self._base

    def __getitem__(self, key):
        self._check()
        if key in self._children:
            return self._children[key]
        return self._wrap(key, self._source()[key])

    def __setitem__(self, key, value):
        self._check()
        if key not in self._children and key in self._source() and self._source()[key] is value:
            return
        self._mark_modified()
        self._children.pop(key, None)
        if isinstance(value, Draft):
            self._children[key] = value
        else:
            self._copy[key] = value

    def __delitem__(self, key):
        self._check()
        if key not in self._source():
            raise KeyError(key)
        self._mark_modified()
        self._children.pop(key, None)
        del self._copy[key]

    def __iter__(self) -> Iterator[Any]:
        self._check()
        return iter(list(self._source().keys()))

    def __len__(self) -> int:
        return len(self._source())

    def __contains__(self, key) -> bool:
        return key in self._source()

    def pop(self, key, default=_NOTHING):
        self._check()
        if key not in self._source():
            if default is _NOTHING:
                raise KeyError(key)
            return default
        child = self._children.pop(key, None)
        value = child._finalize() if child is not None else self._source()[key]
        self._mark_modified()
        del self._copy[key]
        return value


class ListDraft(Draft, MutableSequence):
    """list 與 tuple 的草稿。"""
    __slots__ = ()

    def _clone_base(self):
        return list(self._base)

    def _clone(self, work):
        return list(work)

    def _build(self, work):
        if type(self._base) is tuple:
            return tuple(work)
        return work

    def _source(self):
        return self._copy if self._copy is not None else self._base

    def _index(self, index: int) -> int:
        size = len(self._source())
        if index < 0:
            index += size
        if not 0 <= index < size:
            raise IndexError("draft index out of range")
        return index

    def __getitem__(self, index):
        self._check()
        if isinstance(index, slice):
            # 切片內的元素同樣是子草稿，修改會寫回此清單
            return [self[i] for i in range(*index.indices(len(self)))]
        index = self._index(index)
        if index in self._children:
            return self._children[index]
        return self._wrap(index, self._source()[index])

    def __setitem__(self, index, value):
        self._check()
        if isinstance(index, slice):
            self._flush_children()
            self._mark_modified()
            self._copy[index] = value
            return
        index = self._index(index)
        if index not in self._children and self._source()[index] is value:
            return
        self._mark_modified()
        self._children.pop(index, None)
        if isinstance(value, Draft):
            self._children[index] = value
        else:
            self._copy[index] = value

    def __delitem__(self, index):
        self._check()
        self._flush_children()
        self._mark_modified()
        del self._copy[index]

    def __len__(self) -> int:
        return len(self._source())

    def insert(self, index, value):
        self._check()
        self._flush_children()
        self._mark_modified()
        self._copy.insert(index, value._finalize() if isinstance(value, Draft) else value)

    def append(self, value):
        self.insert(len(self), value)

    def pop(self, index=-1):
        self._check()
        self._flush_children()
        self._mark_modified()
        return self._copy.pop(index)

    def sort(self, *, key=None, reverse=False):
        self._check()
        self._flush_children()
        self._mark_modified()
        self._copy.sort(key=key, reverse=reverse)

    def reverse(self):
        self._check()
        self._flush_children()
        self._mark_modified()
        self._copy.reverse()


class ModelDraft(Draft):
    """
    Pydantic 模型的草稿，以屬性存取欄位。

    工作副本只記錄被改動的欄位，定稿時以 model_copy(update=...) 產生新模型。
    """
    __slots__ = ()

    def _fields(self):
        return type(self._base).model_fields

    def _clone_base(self) -> Dict[str, Any]:
        return {}

    def _clone(self, work: Dict[str, Any]) -> Dict[str, Any]:
        return dict(work)

    def _build(self, work: Dict[str, Any]) -> BaseModel:
        return self._base.model_copy(update=work)

    def _read(self, name: str) -> Any:
        if self._copy is not None and name in self._copy:
            return self._copy[name]
        return getattr(self._base, name)

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        self._check()
        if name not in self._fields():
            return getattr(self._base, name)
        if name in self._children:
            return self._children[name]
        return self._wrap(name, self._read(name))

    def __setattr__(self, name, value):
        if name in Draft.__slots__:
            object.__setattr__(self, name, value)
            return
        self._check()
        if name not in self._fields():
            raise AttributeError(f"'{type(self._base).__name__}' has no field '{name}'")
        if name not in self._children and self._read(name) is value:
            return
        self._mark_modified()
        self._children.pop(name, None)
        if isinstance(value, Draft):
            self._children[name] = value
        else:
            self._copy[name] = value


def produce(base: T, recipe: Callable[[Any], Any]) -> T:
    """
    以草稿執行 recipe，返回結構共享的新狀態。

    Args:
        base: 目前的狀態
        recipe: 接收草稿並就地修改的函數；若返回非 None 且不是草稿本身的值，
            該值直接作為新狀態（此時不可同時修改草稿）

    Returns:
        新狀態；沒有任何修改時返回 base 本身

    範例:
        >>> state = {"count": 0, "items": [1]}
        >>> new_state = produce(state, lambda d: d.__setitem__("count", 1))
        >>> new_state["items"] is state["items"]  # True
    """
    if not is_draftable(base):
        result = recipe(base)
        return base if result is None else result

    draft = create_draft(base)
    result = recipe(draft)
    if result is not None and result is not draft:
        if draft._is_dirty():
            draft._revoke()
            raise RuntimeError("A recipe must either modify its draft or return a new value, not both")
        draft._revoke()
        return result._finalize() if isinstance(result, Draft) else result
    return draft._finalize()


def original(draft: Draft) -> Any:
    """返回草稿建立時的原始值。"""
    return draft._base


def current(draft: Draft) -> Any:
    """返回草稿目前內容的快照（不結束草稿）。"""
    return draft._current()
