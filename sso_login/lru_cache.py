"""
Fixed-capacity key -> value cache with least-recently-used eviction.
Backs the PKCE verifier store so abandoned logins cannot grow memory without bound.
Not thread-safe on its own; callers serialize access.
"""
from collections import OrderedDict
from typing import Any, Callable, Hashable, Iterator

DEFAULT_CAPACITY = 1000

_MISSING = object()


class LRUCache:
    """
    OrderedDict-backed LRU. Most recently used entries sit at the end.
    on_evict(key, value) is called for the entry dropped by set() at capacity;
    it is not called for delete(), pop() or clear().
    A stored None reads the same as a missing key through get()/peek()/pop() with the
    default left at None; pass your own sentinel as default (or use has()) to tell them apart.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        on_evict: Callable[[Hashable, Any], None] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._on_evict = on_evict
        self._data: OrderedDict[Hashable, Any] = OrderedDict()

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the value and mark it most recently used; default for unknown keys."""
        if key not in self._data:
            return default
        self._data.move_to_end(key)
        return self._data[key]

    def peek(self, key: Hashable, default: Any = None) -> Any:
        """Return the value without touching recency."""
        return self._data.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        elif len(self._data) >= self.capacity:
            old_key, old_value = self._data.popitem(last=False)
            if self._on_evict is not None:
                self._on_evict(old_key, old_value)
        self._data[key] = value

    def has(self, key: Hashable) -> bool:
        return key in self._data

    def delete(self, key: Hashable) -> bool:
        """Remove key if present. Returns True if something was removed."""
        return self.pop(key, _MISSING) is not _MISSING

    def pop(self, key: Hashable, default: Any = None) -> Any:
        """Remove key and return its value (default if absent)."""
        return self._data.pop(key, default)

    def clear(self) -> None:
        self._data.clear()

    def values(self) -> list[Any]:
        """Snapshot of values, least recently used first."""
        return list(self._data.values())

    @property
    def size(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._data))
