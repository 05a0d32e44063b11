"""
Local cache writes (optimistic updates).
"""
import logging
import time
from typing import Any, Callable

from .core import CacheEntry, CacheOptions
from .fetcher import FetchCoordinator
from .store import CacheStore
from .subscriptions import NotificationBus

logger = logging.getLogger("cache.mutation")


class CacheMutator:
    """Writes caller-supplied data into the cache and notifies subscribers."""

    def __init__(
        self,
        store: CacheStore,
        bus: NotificationBus,
        coordinator: FetchCoordinator,
        defaults: CacheOptions,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._bus = bus
        self._coordinator = coordinator
        self._defaults = defaults
        self._clock = clock

    def mutate(self, key: str, value: Any, should_revalidate: bool = True) -> Any:
        """
        Replace the cached data for ``key``.

        Args:
            key: Cache key
            value: New data, or a callable receiving the previous data
                (None when absent) and returning the new data
            should_revalidate: Refresh from the entry's producer afterwards

        Returns:
            The data now stored

        Raises:
            Exception: Anything the updater raises; the cache is unchanged
        """
        entry = self._store.get(key)
        previous = entry.data if entry is not None else None

        data = value(previous) if callable(value) else value

        if entry is not None:
            self._store.update(key, data=data, timestamp=self._clock(), error=None)
        else:
            self._store.set(
                key,
                CacheEntry(
                    data=data,
                    timestamp=self._clock(),
                    producer=self._local_producer(key, data),
                    options=self._defaults,
                ),
            )
            self._store.ensure_size(self._defaults.max_entries)

        logger.debug(f"Mutated cache entry: {key}")
        self._bus.notify(key, data, None)

        if should_revalidate and entry is not None and entry.producer is not None:
            self._coordinator.revalidate_in_background(
                key, entry.producer, entry.options, reason="mutation revalidation"
            )

        return data

    def _local_producer(self, key: str, fallback: Any):
        """Producer for entries that only ever held local data: serves the latest value."""
        store = self._store

        async def producer() -> Any:
            entry = store.get(key)
            return entry.data if entry is not None else fallback

        return producer
