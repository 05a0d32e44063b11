"""
Module-level access to the process-wide cache engine.

Each function delegates to ``get_cache_manager()``; use a ``CacheManager``
instance directly when isolation is needed.
"""
from typing import Any, Callable, Dict, Optional

from swrcache.cache import CacheOptions, get_cache_manager
from swrcache.cache.core import OptionsLike, Producer, Subscriber

DEFAULT_OPTIONS = CacheOptions.from_settings()


async def get_or_fetch(key: str, producer: Producer, options: OptionsLike = None) -> Any:
    """Stale-while-revalidate read through the shared engine."""
    return await get_cache_manager().get_or_fetch(key, producer, options)


async def fetch_now(key: str, producer: Producer, options: OptionsLike = None) -> Any:
    return await get_cache_manager().fetch_now(key, producer, options)


def subscribe(key: str, callback: Subscriber) -> Callable[[], None]:
    return get_cache_manager().subscribe(key, callback)


def mutate(key: str, value: Any, should_revalidate: bool = True) -> Any:
    return get_cache_manager().mutate(key, value, should_revalidate)


def clear_cache(key: Optional[str] = None) -> int:
    return get_cache_manager().clear(key)


def cache_info() -> Dict[str, Any]:
    return get_cache_manager().cache_info()


def trigger_revalidation() -> int:
    return get_cache_manager().trigger_revalidation()


def polling_info() -> Dict[str, Any]:
    return get_cache_manager().polling_info()


def has_active_polling(key: str) -> bool:
    return get_cache_manager().has_active_polling(key)


def cancel(key: str) -> bool:
    return get_cache_manager().cancel(key)


def cancel_all() -> int:
    return get_cache_manager().cancel_all()


def is_cancelled(key: str) -> bool:
    return get_cache_manager().is_cancelled(key)


def cancellation_info() -> Dict[str, Any]:
    return get_cache_manager().cancellation_info()


def cleanup() -> None:
    """Clear the shared cache, its polling tasks and subscribers."""
    get_cache_manager().cleanup()
