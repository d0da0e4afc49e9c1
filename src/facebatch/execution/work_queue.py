"""Thread-safe multiset of pending work items.

Order is not part of the contract; items are handed out FIFO so that a
re-queued item goes to the back.  Safe for concurrent ``take``/``put`` from
threads and asyncio tasks alike.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable
from typing import Generic, TypeVar

T = TypeVar("T")


class QueueEmpty(LookupError):
    """Raised by :meth:`WorkQueue.take` when no item is pending."""


class WorkQueue(Generic[T]):
    """Pending work items for one batch."""

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._items: deque[T] = deque(items)
        self._lock = threading.Lock()

    def put(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def take(self) -> T:
        """Remove and return one pending item.

        Raises:
            QueueEmpty: If nothing is pending
        """
        with self._lock:
            if not self._items:
                raise QueueEmpty("work queue is empty")
            return self._items.popleft()

    def drain(self) -> list[T]:
        """Remove and return every pending item."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
            return items

    def is_empty(self) -> bool:
        with self._lock:
            return not self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __repr__(self) -> str:
        return f"WorkQueue(pending={len(self)})"


__all__ = ["QueueEmpty", "WorkQueue"]
