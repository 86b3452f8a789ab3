"""
Bounded item caches keyed by item number.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any


class ItemCache:
    """
    Ordered mapping from item number to decoded item.

    Read caches evict the least recently used entry once ``limit`` is reached.
    Write caches are created with ``evict=False``: they hold data that has not
    reached the backend yet, so ``limit`` only marks them as over capacity.
    """

    def __init__(self, limit: int, *, evict: bool = True):
        if limit <= 0:
            raise ValueError("cache limit must be positive")
        self.limit = limit
        self.evict = evict
        self._lock = threading.RLock()
        self._items: OrderedDict[int, Any] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, number: int) -> bool:
        with self._lock:
            return number in self._items

    @property
    def over_capacity(self) -> bool:
        return len(self) > self.limit

    def get(self, number: int) -> Any | None:
        with self._lock:
            item = self._items.get(number)
            if item is not None and self.evict:
                self._items.move_to_end(number)
            return item

    def put(self, number: int, item: Any) -> None:
        with self._lock:
            self._items[number] = item
            self._items.move_to_end(number)
            if self.evict:
                while len(self._items) > self.limit:
                    self._items.popitem(last=False)

    def setdefault(self, number: int, item: Any) -> None:
        """Insert ``item`` unless ``number`` is already cached."""

        with self._lock:
            if number not in self._items:
                self.put(number, item)

    def keys(self) -> list[int]:
        """Cached item numbers in ascending order."""

        with self._lock:
            return sorted(self._items)

    def items(self, numbers: list[int]) -> list[Any]:
        with self._lock:
            return [self._items[n] for n in numbers]

    def truncate_from(self, number: int) -> int:
        """Drop every entry with an item number >= ``number``."""

        with self._lock:
            doomed = [n for n in self._items if n >= number]
            for n in doomed:
                del self._items[n]
            return len(doomed)

    def splice(self, count: int) -> None:
        """Drop the ``count`` lowest item numbers."""

        with self._lock:
            for n in sorted(self._items)[:count]:
                del self._items[n]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
