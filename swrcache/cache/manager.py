"""
Main cache orchestration with stale-while-revalidate, polling and cancellation.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

from config.settings import Settings, settings as default_settings

from .cancellation import CancellationRegistry
from .core import CacheOptions, OptionsLike, Producer, Subscriber
from .environment import EnvironmentObserver, NullEnvironment
from .fetcher import FetchCoordinator
from .mutation import CacheMutator
from .polling import PollingScheduler
from .revalidation import MANUAL, RevalidationTrigger
from .store import CacheStore
from .subscriptions import NotificationBus

logger = logging.getLogger("cache.manager")


class CacheManager:
    """
    The cache engine. Owns, as private state:
    - the cache store (TTL expiry, oldest-write eviction)
    - in-flight requests (deduplication) and cancellation tokens
    - subscribers per key
    - polling tasks and focus/reconnect revalidation

    One instance is shared process-wide through ``get_cache_manager``;
    separate instances are fully isolated from each other.
    """

    def __init__(
        self,
        options: OptionsLike = None,
        environment: Optional[EnvironmentObserver] = None,
        clock: Callable[[], float] = time.time,
        config: Optional[Settings] = None,
    ):
        """
        Initialize the cache manager.

        Args:
            options: Default options for every key, overlaid on the settings
            environment: Visibility / network observer (default: always
                visible and online)
            clock: Time source in seconds
            config: Settings to read defaults and throttles from
        """
        config = config or default_settings
        base = CacheOptions.from_settings(config)
        if isinstance(options, CacheOptions):
            self._defaults = options
        else:
            self._defaults = base.merged(options)

        self._clock = clock
        self._environment = environment or NullEnvironment()

        self._polling = PollingScheduler(self._environment, clock)
        self._store = CacheStore(clock, lifecycle=self._polling)
        self._bus = NotificationBus()
        self._cancellation = CancellationRegistry()
        self._fetcher = FetchCoordinator(
            self._store, self._bus, self._cancellation, self._defaults, clock
        )
        self._polling.bind(self._store, self._fetcher)
        self._mutator = CacheMutator(
            self._store, self._bus, self._fetcher, self._defaults, clock
        )
        self._revalidation = RevalidationTrigger(
            self._store,
            self._fetcher,
            self._environment,
            clock,
            focus_throttle=config.focus_throttle,
            reconnect_throttle=config.reconnect_throttle,
            min_age=config.revalidate_min_age,
        )
        self._revalidation.start()

    @property
    def defaults(self) -> CacheOptions:
        return self._defaults

    @property
    def environment(self) -> EnvironmentObserver:
        return self._environment

    # Fetching

    async def get_or_fetch(
        self,
        key: str,
        producer: Producer,
        options: OptionsLike = None,
    ) -> Any:
        """
        Get data from cache or fetch it.

        Fresh cached data is returned at once and refreshed in the
        background; a miss, an expired entry or an error-only entry waits
        for the producer.

        Args:
            key: Unique cache key
            producer: ``async producer(signal)`` returning the data
            options: Per-call overrides (mapping or CacheOptions)
        """
        return await self._fetcher.get_or_fetch(key, producer, options)

    async def fetch_now(
        self,
        key: str,
        producer: Producer,
        options: OptionsLike = None,
    ) -> Any:
        """Fetch ``key`` regardless of cache freshness (deduplicated, retried)."""
        return await self._fetcher.fetch_now(key, producer, options)

    # Subscriptions and writes

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Observe ``(data, error)`` updates for ``key``; returns unsubscribe."""
        return self._bus.subscribe(key, callback)

    def mutate(self, key: str, value: Any, should_revalidate: bool = True) -> Any:
        """Write ``value`` (or ``value(previous)``) into the cache."""
        return self._mutator.mutate(key, value, should_revalidate)

    def get_data(self, key: str) -> Any:
        """Cached data for ``key`` without fetching, or None."""
        entry = self._store.get(key)
        return entry.data if entry is not None else None

    def get_error(self, key: str) -> Optional[BaseException]:
        entry = self._store.get(key)
        return entry.error if entry is not None else None

    def clear(self, key: Optional[str] = None) -> int:
        """
        Clear one key or the whole cache; polling for cleared keys stops.

        Returns:
            Number of entries cleared
        """
        return self._store.clear(key)

    def cache_info(self) -> Dict[str, Any]:
        return self._store.info()

    def entry_info(self, key: str) -> Optional[Dict[str, Any]]:
        """Diagnostic summary of one entry, or None when not cached."""
        entry = self._store.get(key)
        if entry is None:
            return None
        return {
            "key": key,
            **entry.to_dict(),
            "expired": self._store.is_expired(entry),
            "polling": self._polling.has_active(key),
        }

    # Revalidation and polling

    def trigger_revalidation(self) -> int:
        """
        Refresh every eligible cached entry in the background.

        Returns:
            Number of refreshes issued
        """
        return len(self._revalidation.revalidate_all(MANUAL))

    def polling_info(self) -> Dict[str, Any]:
        return self._polling.info()

    def has_active_polling(self, key: str) -> bool:
        return self._polling.has_active(key)

    # Cancellation

    def cancel(self, key: str) -> bool:
        """Cancel the in-flight request for ``key``; False if none was live."""
        return self._cancellation.cancel(key)

    def cancel_all(self) -> int:
        return self._cancellation.cancel_all()

    def is_cancelled(self, key: str) -> bool:
        return self._cancellation.is_cancelled(key)

    def cancellation_info(self) -> Dict[str, Any]:
        return self._cancellation.info()

    # Lifecycle

    def cleanup(self) -> None:
        """Clear all cache entries, polling tasks and subscribers."""
        self._store.clear()
        self._bus.clear()
        logger.info("Cache, polling and subscribers cleaned up")

    def detach(self) -> None:
        """Stop listening to the environment and stop all polling."""
        self._revalidation.stop()
        self._polling.stop_all()

    async def close(self) -> None:
        """Detach from the environment, stop polling, cancel background work."""
        self.detach()
        self._cancellation.cancel_all()
        await self._fetcher.close()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self._store),
            **self._fetcher.get_stats(),
            "polling": self._polling.info(),
            "cancellation": self._cancellation.info(),
            "subscribers": self._bus.snapshot(),
        }


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None


def get_cache_manager() -> CacheManager:
    """Get or create the global cache manager."""
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = CacheManager()
    return _cache_manager


def set_cache_manager(manager: Optional[CacheManager]) -> None:
    """Replace the global cache manager (None resets it)."""
    global _cache_manager
    if _cache_manager is not None and _cache_manager is not manager:
        _cache_manager.detach()
    _cache_manager = manager
