"""Fixed-capacity, insertion-ordered caches for trade and order streams."""

from __future__ import annotations

from collections import OrderedDict, deque
from typing import Callable, Generic, Iterator, TypeVar

T = TypeVar("T")


class ArrayCache(Generic[T]):
    """Ring buffer keeping the most recent ``capacity`` items.

    Appending to a full cache evicts the oldest item. Iteration order is
    insertion order.
    """

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items: deque[T] = deque(maxlen=capacity)

    def append(self, item: T) -> None:
        self._items.append(item)

    def extend(self, items: list[T]) -> None:
        self._items.extend(items)

    def get_all(self) -> list[T]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(capacity={self.capacity}, size={len(self)})"


class ArrayCacheById(ArrayCache[T]):
    """Bounded cache where a newer item with a known id replaces the older one.

    The replacement moves to the newest position, so an order that keeps
    updating is never evicted ahead of orders that went quiet.
    """

    def __init__(self, capacity: int = 1000, *, key: Callable[[T], str] = lambda item: item.id):
        super().__init__(capacity)
        self._key = key
        self._by_id: OrderedDict[str, T] = OrderedDict()

    def append(self, item: T) -> None:
        item_id = self._key(item)
        if item_id in self._by_id:
            del self._by_id[item_id]
        elif len(self._by_id) >= self.capacity:
            self._by_id.popitem(last=False)
        self._by_id[item_id] = item

    def extend(self, items: list[T]) -> None:
        for item in items:
            self.append(item)

    def get(self, item_id: str) -> T | None:
        return self._by_id.get(item_id)

    def get_all(self) -> list[T]:
        return list(self._by_id.values())

    def clear(self) -> None:
        self._by_id.clear()

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._by_id.values()))
