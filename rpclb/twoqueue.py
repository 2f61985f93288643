from __future__ import annotations

from collections import OrderedDict
from typing import Generic, TypeVar

KeyT = TypeVar("KeyT")
ValueT = TypeVar("ValueT")


class TwoQueueCache(Generic[KeyT, ValueT]):
    """
    Bounded 2Q cache.

    New keys land in a FIFO ``recent`` queue. A key that is read again while
    in ``recent``, or re-admitted shortly after being evicted from it (its
    key is still in ``ghost``), moves to the LRU ``frequent`` queue.
    """

    __slots__ = ("_size", "_recent_size", "_ghost_size", "_recent", "_frequent", "_ghost")

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("size must be at least 1")

        self._size = size
        self._recent_size = max(1, size // 4)
        self._ghost_size = max(1, size // 2)
        self._recent: OrderedDict[KeyT, ValueT] = OrderedDict()
        self._frequent: OrderedDict[KeyT, ValueT] = OrderedDict()
        self._ghost: OrderedDict[KeyT, None] = OrderedDict()

    def get(self, key: KeyT) -> ValueT | None:
        if key in self._frequent:
            self._frequent.move_to_end(key)
            return self._frequent[key]

        if key in self._recent:
            value = self._recent.pop(key)
            self._frequent[key] = value
            return value

        return None

    def set(self, key: KeyT, value: ValueT) -> None:
        if key in self._frequent:
            self._frequent.move_to_end(key)
            self._frequent[key] = value
            return

        if key in self._recent:
            self._recent[key] = value
            return

        if key in self._ghost:
            self._ensure_space(ghost_hit=True)
            self._ghost.pop(key, None)
            self._frequent[key] = value
            return

        self._ensure_space(ghost_hit=False)
        self._recent[key] = value

    def peek(self, key: KeyT) -> ValueT | None:
        """Like get, without touching recency."""
        if key in self._frequent:
            return self._frequent[key]
        return self._recent.get(key)

    def remove(self, key: KeyT) -> ValueT | None:
        if key in self._frequent:
            return self._frequent.pop(key)
        if key in self._recent:
            return self._recent.pop(key)
        self._ghost.pop(key, None)
        return None

    def contains(self, key: KeyT) -> bool:
        return key in self._recent or key in self._frequent

    def keys(self) -> list[KeyT]:
        return list(self._recent) + list(self._frequent)

    def _ensure_space(self, ghost_hit: bool) -> None:
        if len(self) < self._size:
            return

        recent_len = len(self._recent)
        if recent_len > 0 and (
            recent_len > self._recent_size
            or (recent_len == self._recent_size and not ghost_hit)
        ):
            evicted, _ = self._recent.popitem(last=False)
            self._ghost[evicted] = None
            if len(self._ghost) > self._ghost_size:
                self._ghost.popitem(last=False)
            return

        if self._frequent:
            self._frequent.popitem(last=False)
        else:
            self._recent.popitem(last=False)

    def __len__(self) -> int:
        return len(self._recent) + len(self._frequent)

    def __contains__(self, key: KeyT) -> bool:
        return self.contains(key)
