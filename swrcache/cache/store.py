"""
Keyed cache store with TTL expiry and oldest-write eviction.

The store is the only place entries live. Writes and removals are reported
to a lifecycle listener (the polling scheduler), so a key's polling task
exists exactly as long as its cache entry does.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from .core import CacheEntry

logger = logging.getLogger("cache.store")


class StoreLifecycle(Protocol):
    """Receives cache lifecycle events."""

    def entry_written(self, key: str, entry: CacheEntry) -> None: ...

    def entry_removed(self, key: str) -> None: ...

    def store_cleared(self) -> None: ...


class CacheStore:
    """In-memory map of cache entries."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        lifecycle: Optional[StoreLifecycle] = None,
    ):
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock
        self._lifecycle = lifecycle

    def bind_lifecycle(self, lifecycle: Optional[StoreLifecycle]) -> None:
        self._lifecycle = lifecycle

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        """Store ``entry`` as the newest write for ``key``."""
        # Re-insert so iteration order follows write order
        self._entries.pop(key, None)
        self._entries[key] = entry
        if self._lifecycle is not None:
            self._lifecycle.entry_written(key, entry)

    def update(self, key: str, **changes: Any) -> Optional[CacheEntry]:
        """
        Change fields of an existing entry in place.

        Unlike ``set`` this does not count as a new write for polling.
        A new ``timestamp`` moves the key to the newest write position.

        Returns:
            The updated entry, or None if ``key`` is not cached
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        for name in changes:
            if not hasattr(entry, name):
                raise AttributeError(f"CacheEntry has no field '{name}'")
        for name, value in changes.items():
            setattr(entry, name, value)
        if "timestamp" in changes:
            self._entries[key] = self._entries.pop(key)
        return entry

    def delete(self, key: str) -> bool:
        """
        Remove ``key`` and stop its polling task.

        Returns:
            True if an entry was removed
        """
        if self._lifecycle is not None:
            self._lifecycle.entry_removed(key)
        return self._entries.pop(key, None) is not None

    def has(self, key: str) -> bool:
        return key in self._entries

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def snapshot(self) -> Dict[str, CacheEntry]:
        """Shallow copy of the key -> entry map."""
        return dict(self._entries)

    def is_expired(self, entry: CacheEntry) -> bool:
        """True once an entry is older than its TTL; a TTL of 0 never expires."""
        ttl = entry.options.ttl
        if ttl == 0:
            return False
        return self._clock() - entry.timestamp > ttl

    def evict_oldest(self) -> Optional[str]:
        """
        Remove the entry with the oldest write timestamp.

        Ties go to the first entry in iteration order.

        Returns:
            The evicted key, or None if the store is empty
        """
        oldest_key: Optional[str] = None
        oldest_timestamp = 0.0
        for key, entry in self._entries.items():
            if oldest_key is None or entry.timestamp < oldest_timestamp:
                oldest_key = key
                oldest_timestamp = entry.timestamp

        if oldest_key is not None:
            logger.debug(f"Evicting oldest cache entry: {oldest_key}")
            self.delete(oldest_key)
        return oldest_key

    def ensure_size(self, max_entries: int) -> int:
        """
        Evict oldest entries until at most ``max_entries`` remain.

        Returns:
            Number of entries evicted
        """
        evicted = 0
        while len(self._entries) > max_entries:
            self.evict_oldest()
            evicted += 1
        return evicted

    def clear(self, key: Optional[str] = None) -> int:
        """
        Clear one key, or everything when ``key`` is None.

        Returns:
            Number of entries cleared
        """
        if key is not None:
            return 1 if self.delete(key) else 0

        count = len(self._entries)
        if self._lifecycle is not None:
            self._lifecycle.store_cleared()
        self._entries.clear()
        if count:
            logger.info(f"Cleared {count} cache entries")
        return count

    def info(self) -> Dict[str, Any]:
        return {"size": len(self._entries), "keys": list(self._entries)}
