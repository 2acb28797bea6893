"""Thread-safe FIFO shared between a producer and a polling worker."""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class WorkQueue(Generic[T]):
    """Unbounded FIFO exposing only non-blocking put / try_get.

    The lock is held only while the container is mutated, never while the
    consumer processes an item.
    """

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._lock = threading.Lock()
        self._total = 0  # Items ever enqueued

    def put(self, item: T) -> None:
        """Append an item. Never blocks for longer than the container update."""
        with self._lock:
            self._items.append(item)
            self._total += 1

    def put_with(self, factory: Callable[[int], T]) -> T:
        """Build and append an item atomically.

        Args:
            factory: Called under the queue lock with the number of items
                ever enqueued; its result is appended. Must be cheap (e.g.
                stamp an ID on an already built item)

        Returns:
            The appended item
        """
        with self._lock:
            item = factory(self._total)
            self._items.append(item)
            self._total += 1
        return item

    def try_get(self) -> T | None:
        """Pop the oldest item, or return None if the queue is empty."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
