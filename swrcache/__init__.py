"""
swrcache: stale-while-revalidate data caching for asyncio applications.
"""
from swrcache.api import (
    DEFAULT_OPTIONS,
    cache_info,
    cancel,
    cancel_all,
    cancellation_info,
    cleanup,
    clear_cache,
    fetch_now,
    get_or_fetch,
    has_active_polling,
    is_cancelled,
    mutate,
    polling_info,
    subscribe,
    trigger_revalidation,
)
from swrcache.cache import (
    CacheManager,
    CacheOptions,
    CancellationError,
    CancellationToken,
    ManualEnvironment,
    NullEnvironment,
    get_cache_manager,
    set_cache_manager,
)

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_OPTIONS",
    "CacheManager",
    "CacheOptions",
    "CancellationError",
    "CancellationToken",
    "ManualEnvironment",
    "NullEnvironment",
    "cache_info",
    "cancel",
    "cancel_all",
    "cancellation_info",
    "cleanup",
    "clear_cache",
    "fetch_now",
    "get_cache_manager",
    "get_or_fetch",
    "has_active_polling",
    "is_cancelled",
    "mutate",
    "polling_info",
    "set_cache_manager",
    "subscribe",
    "trigger_revalidation",
]
