"""
Host environment signals: visibility and network state.

Hosts without such signals use NullEnvironment, which reports "always
visible, always online". ManualEnvironment lets the host push state changes
itself (a server health check, a desktop shell, tests).
"""
import logging
from typing import Callable, List

logger = logging.getLogger("cache.environment")

# callback(hidden) / callback(offline)
StateCallback = Callable[[bool], None]


class EnvironmentObserver:
    """Interface consumed by the polling scheduler and revalidation trigger."""

    def is_hidden(self) -> bool:
        raise NotImplementedError

    def is_offline(self) -> bool:
        raise NotImplementedError

    def on_visibility_change(self, callback: StateCallback) -> Callable[[], None]:
        """Register ``callback(hidden)``; returns an unsubscribe function."""
        raise NotImplementedError

    def on_network_change(self, callback: StateCallback) -> Callable[[], None]:
        """Register ``callback(offline)``; returns an unsubscribe function."""
        raise NotImplementedError


def _noop() -> None:
    return None


class NullEnvironment(EnvironmentObserver):
    """Always visible and online; never emits events."""

    def is_hidden(self) -> bool:
        return False

    def is_offline(self) -> bool:
        return False

    def on_visibility_change(self, callback: StateCallback) -> Callable[[], None]:
        return _noop

    def on_network_change(self, callback: StateCallback) -> Callable[[], None]:
        return _noop


class ManualEnvironment(EnvironmentObserver):
    """Environment whose state is set explicitly by the host."""

    def __init__(self, hidden: bool = False, offline: bool = False):
        self._hidden = hidden
        self._offline = offline
        self._visibility_callbacks: List[StateCallback] = []
        self._network_callbacks: List[StateCallback] = []

    def is_hidden(self) -> bool:
        return self._hidden

    def is_offline(self) -> bool:
        return self._offline

    def on_visibility_change(self, callback: StateCallback) -> Callable[[], None]:
        return self._register(self._visibility_callbacks, callback)

    def on_network_change(self, callback: StateCallback) -> Callable[[], None]:
        return self._register(self._network_callbacks, callback)

    def set_hidden(self, hidden: bool) -> None:
        """Update visibility; callbacks fire only on an actual change."""
        if hidden == self._hidden:
            return
        self._hidden = hidden
        logger.debug(f"Visibility changed: hidden={hidden}")
        self._emit(self._visibility_callbacks, hidden)

    def set_offline(self, offline: bool) -> None:
        """Update network state; callbacks fire only on an actual change."""
        if offline == self._offline:
            return
        self._offline = offline
        logger.debug(f"Network changed: offline={offline}")
        self._emit(self._network_callbacks, offline)

    @staticmethod
    def _register(callbacks: List[StateCallback], callback: StateCallback) -> Callable[[], None]:
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    @staticmethod
    def _emit(callbacks: List[StateCallback], state: bool) -> None:
        for callback in list(callbacks):
            try:
                callback(state)
            except Exception:
                logger.exception("Error in environment callback")
