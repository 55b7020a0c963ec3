"""Collection Cache Module - In-memory mirror of store-pushed collections.

Philosophy:
- Full replacement on every push (no incremental merge)
- Single writer: only the store subscription callback calls replace()
- Thread-safe reads for the state machine handlers
- Zero external dependencies

Public API (the "studs"):
    CollectionCache: Read-through cache of the latest pushed collection
"""

import threading
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

T = TypeVar("T")


class CollectionCache(Generic[T]):
    """Latest full collection pushed by a store subscription.

    Example:
        >>> active_sessions = CollectionCache()
        >>> store.subscribe_active_sessions(active_sessions.replace)
        >>> active_sessions.snapshot()
        [Session(id=1, ...)]
    """

    def __init__(self, items: Iterable[T] | None = None):
        """Initialize cache.

        Args:
            items: Initial collection (default: empty)
        """
        self._cache_lock = threading.Lock()
        self._items: list[T] = list(items or [])
        self._replace_count = 0

    def replace(self, items: Iterable[T]) -> None:
        """Replace the cached collection in full.

        Args:
            items: The complete current collection
        """
        new_items = list(items)
        with self._cache_lock:
            self._items = new_items
            self._replace_count += 1

    def snapshot(self) -> list[T]:
        """Return a copy of the cached collection."""
        with self._cache_lock:
            return list(self._items)

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        """Return the first cached item matching predicate, or None."""
        for item in self.snapshot():
            if predicate(item):
                return item
        return None

    def is_empty(self) -> bool:
        with self._cache_lock:
            return not self._items

    @property
    def replace_count(self) -> int:
        """Number of pushes received."""
        with self._cache_lock:
            return self._replace_count

    def __len__(self) -> int:
        with self._cache_lock:
            return len(self._items)


__all__ = ["CollectionCache"]
