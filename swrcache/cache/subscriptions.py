"""
Per-key publish/subscribe notification bus.
"""
import logging
from typing import Any, Callable, Dict, Optional

from .core import Subscriber

logger = logging.getLogger("cache.subscriptions")


class NotificationBus:
    """
    Delivers (data, error) pairs to the observers of a key.

    Subscribers are kept in insertion order and deduplicated; a key with no
    subscribers left is pruned immediately. A subscriber that raises is
    logged and does not stop delivery to the others.
    """

    def __init__(self):
        self._subscribers: Dict[str, Dict[Subscriber, None]] = {}

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """
        Register ``callback`` for ``key``.

        Returns:
            A function that removes the subscription; safe to call twice
        """
        self._subscribers.setdefault(key, {})[callback] = None

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key)
            if callbacks is None:
                return
            callbacks.pop(callback, None)
            if not callbacks:
                del self._subscribers[key]

        return unsubscribe

    def notify(self, key: str, data: Any, error: Optional[BaseException] = None) -> int:
        """
        Call every subscriber of ``key``.

        Returns:
            Number of subscribers that were called
        """
        callbacks = self._subscribers.get(key)
        if not callbacks:
            return 0

        # Copy so callbacks may unsubscribe while being notified
        delivered = 0
        for callback in list(callbacks):
            delivered += 1
            try:
                callback(data, error)
            except Exception:
                logger.exception(f"Error in subscriber callback for {key}")
        return delivered

    def has_subscribers(self, key: str) -> bool:
        return bool(self._subscribers.get(key))

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, ()))

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            self._subscribers.clear()
        else:
            self._subscribers.pop(key, None)

    def snapshot(self) -> Dict[str, int]:
        """Subscriber counts per key."""
        return {key: len(callbacks) for key, callbacks in self._subscribers.items()}
