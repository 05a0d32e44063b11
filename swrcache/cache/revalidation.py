"""
Focus / reconnect revalidation.

When the host becomes visible again or comes back online, every eligible
cached entry is refreshed through the fetch coordinator.
"""
import logging
import time
from typing import Callable, List, Optional, TYPE_CHECKING

from .environment import EnvironmentObserver, NullEnvironment

if TYPE_CHECKING:
    from .fetcher import FetchCoordinator
    from .store import CacheStore

logger = logging.getLogger("cache.revalidation")

FOCUS = "focus"
RECONNECT = "reconnect"
MANUAL = "manual"


class RevalidationTrigger:
    """Debounced "refresh everything" on focus and reconnect."""

    def __init__(
        self,
        store: "CacheStore",
        coordinator: "FetchCoordinator",
        environment: Optional[EnvironmentObserver] = None,
        clock: Callable[[], float] = time.time,
        focus_throttle: float = 5.0,
        reconnect_throttle: float = 5.0,
        min_age: float = 1.0,
    ):
        self._store = store
        self._coordinator = coordinator
        self._environment = environment or NullEnvironment()
        self._clock = clock
        self.focus_throttle = focus_throttle
        self.reconnect_throttle = reconnect_throttle
        self.min_age = min_age
        self._last_focus: Optional[float] = None
        self._last_reconnect: Optional[float] = None
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def listening(self) -> bool:
        return bool(self._unsubscribers)

    def start(self) -> None:
        """Attach to the environment's visibility and network events."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._environment.on_visibility_change(self._on_visibility_change),
            self._environment.on_network_change(self._on_network_change),
        ]

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_visibility_change(self, hidden: bool) -> None:
        if hidden:
            return
        now = self._clock()
        if self._last_focus is not None and now - self._last_focus <= self.focus_throttle:
            logger.debug("Focus revalidation throttled")
            return
        self._last_focus = now
        self.revalidate_all(FOCUS)

    def _on_network_change(self, offline: bool) -> None:
        if offline:
            return
        now = self._clock()
        if self._last_reconnect is not None and now - self._last_reconnect <= self.reconnect_throttle:
            logger.debug("Reconnect revalidation throttled")
            return
        self._last_reconnect = now
        self.revalidate_all(RECONNECT)

    def revalidate_all(self, reason: str = MANUAL) -> List[str]:
        """
        Refresh every eligible entry in the background.

        An entry is eligible when it has a producer, opted in for this kind
        of revalidation, and was written more than ``min_age`` seconds ago.

        Returns:
            Keys for which a refresh was issued
        """
        now = self._clock()
        issued = []
        for key, entry in self._store.snapshot().items():
            options = entry.options
            if reason == FOCUS:
                wanted = options.revalidate_on_focus
            elif reason == RECONNECT:
                wanted = options.revalidate_on_reconnect
            else:
                wanted = options.revalidate_on_focus or options.revalidate_on_reconnect

            if not wanted or entry.producer is None:
                continue
            if now - entry.timestamp <= self.min_age:
                continue

            self._coordinator.revalidate_in_background(
                key, entry.producer, options, reason=f"{reason} revalidation"
            )
            issued.append(key)

        if issued:
            logger.info(f"Revalidating {len(issued)} entries on {reason}")
        return issued
