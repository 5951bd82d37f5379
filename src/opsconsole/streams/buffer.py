"""Bounded FIFO ring buffer for rendered log lines."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Fixed-capacity append-only sequence that evicts the oldest items.

    After pushing ``capacity + k`` items the buffer holds exactly the last
    ``capacity`` of them, in original order.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._items: deque[T] = deque(maxlen=capacity)
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    @property
    def evicted(self) -> int:
        """Total number of items dropped to stay within capacity."""
        return self._evicted

    def append(self, item: T) -> None:
        if len(self._items) == self.capacity:
            self._evicted += 1
        self._items.append(item)

    def extend(self, items: Iterable[T]) -> None:
        for item in items:
            self.append(item)

    def snapshot(self) -> list[T]:
        return list(self._items)

    def tail(self, n: int) -> list[T]:
        """Return the newest ``n`` items, oldest first."""
        if n <= 0:
            return []
        items = list(self._items)
        return items[-n:]

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __getitem__(self, index: int) -> T:
        return self._items[index]
