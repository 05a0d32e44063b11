"""
Stale-while-revalidate cache engine with request deduplication, retries,
cancellation, polling and focus/reconnect revalidation.
"""
from .core import CacheEntry, CacheOptions, Producer, Subscriber, resolve_options
from .cancellation import (
    CancellationError,
    CancellationRegistry,
    CancellationSignal,
    CancellationToken,
    TimeoutSignal,
    create_cancellation_error,
    is_cancellation_error,
)
from .coalescer import RequestCoalescer
from .environment import EnvironmentObserver, ManualEnvironment, NullEnvironment
from .store import CacheStore
from .subscriptions import NotificationBus
from .fetcher import FetchCoordinator
from .polling import PollingScheduler, RecurringTimer
from .revalidation import RevalidationTrigger
from .mutation import CacheMutator
from .manager import CacheManager, get_cache_manager, set_cache_manager

__all__ = [
    # Core types
    "CacheEntry",
    "CacheOptions",
    "Producer",
    "Subscriber",
    "resolve_options",
    # Cancellation
    "CancellationError",
    "CancellationRegistry",
    "CancellationSignal",
    "CancellationToken",
    "TimeoutSignal",
    "create_cancellation_error",
    "is_cancellation_error",
    # Components
    "RequestCoalescer",
    "EnvironmentObserver",
    "ManualEnvironment",
    "NullEnvironment",
    "CacheStore",
    "NotificationBus",
    "FetchCoordinator",
    "PollingScheduler",
    "RecurringTimer",
    "RevalidationTrigger",
    "CacheMutator",
    # Manager
    "CacheManager",
    "get_cache_manager",
    "set_cache_manager",
]
