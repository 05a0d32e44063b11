"""
Per-key polling: re-fetch cached keys on a fixed interval.

A polling task lives exactly as long as its cache entry: the store starts
(or replaces) it on every write whose options declare a refresh interval,
and stops it when the key is deleted, evicted or cleared.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from .core import CacheEntry, CacheOptions
from .environment import EnvironmentObserver, NullEnvironment

if TYPE_CHECKING:
    from .fetcher import FetchCoordinator
    from .store import CacheStore

logger = logging.getLogger("cache.polling")


class RecurringTimer:
    """Calls ``callback`` every ``interval`` seconds until stopped."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callable[[], None],
    ):
        self.interval = interval
        self._loop = loop
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._stopped = False
        self._schedule()

    @property
    def active(self) -> bool:
        return not self._stopped

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        if self._stopped:
            return
        # Reschedule first so a failing callback does not end the timer
        self._schedule()
        try:
            self._callback()
        except Exception:
            logger.exception("Error in polling callback")

    def stop(self) -> None:
        """Stop the timer; calling it again is a no-op."""
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


@dataclass
class PollingTask:
    """Bookkeeping for one polled key."""
    key: str
    timer: RecurringTimer
    options: CacheOptions
    last_issued_at: float


class PollingScheduler:
    """
    Owns the recurring refresh timers.

    Ticks are skipped while the host is hidden or offline (unless the
    options allow it) and while the deduping interval since the last
    issued refresh has not elapsed.
    """

    def __init__(
        self,
        environment: Optional[EnvironmentObserver] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._environment = environment or NullEnvironment()
        self._clock = clock
        self._tasks: Dict[str, PollingTask] = {}
        self._store: Optional["CacheStore"] = None
        self._coordinator: Optional["FetchCoordinator"] = None

    def bind(self, store: "CacheStore", coordinator: "FetchCoordinator") -> None:
        self._store = store
        self._coordinator = coordinator

    # Cache lifecycle

    def entry_written(self, key: str, entry: CacheEntry) -> None:
        if entry.options.refresh_interval > 0:
            self.start(key, entry.options)
        else:
            self.stop(key)

    def entry_removed(self, key: str) -> None:
        self.stop(key)

    def store_cleared(self) -> None:
        self.stop_all()

    # Task management

    def start(self, key: str, options: CacheOptions) -> bool:
        """
        Start polling ``key``, replacing any existing task for it.

        Returns:
            True if a task was started
        """
        self.stop(key)

        if options.refresh_interval <= 0:
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, polling not started for {key}")
            return False

        timer = RecurringTimer(loop, options.refresh_interval, lambda: self._tick(key))
        self._tasks[key] = PollingTask(
            key=key,
            timer=timer,
            options=options,
            last_issued_at=self._clock(),
        )
        logger.debug(f"Polling {key} every {options.refresh_interval}s")
        return True

    def stop(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.timer.stop()
        logger.debug(f"Stopped polling {key}")
        return True

    def stop_all(self) -> int:
        count = len(self._tasks)
        for task in self._tasks.values():
            task.timer.stop()
        self._tasks.clear()
        return count

    def should_pause(self, options: CacheOptions) -> bool:
        if self._environment.is_hidden() and not options.refresh_when_hidden:
            return True
        if self._environment.is_offline() and not options.refresh_when_offline:
            return True
        return False

    def _tick(self, key: str) -> None:
        task = self._tasks.get(key)
        if task is None:
            return

        if self.should_pause(task.options):
            logger.debug(f"Polling paused for {key}")
            return

        now = self._clock()
        if now - task.last_issued_at < task.options.deduping_interval:
            return

        if self._store is None or self._coordinator is None:
            return
        entry = self._store.get(key)
        if entry is None:
            return

        task.last_issued_at = now
        self._coordinator.revalidate_in_background(
            key, entry.producer, entry.options, reason="poll"
        )

    def has_active(self, key: str) -> bool:
        return key in self._tasks

    def get_task(self, key: str) -> Optional[PollingTask]:
        return self._tasks.get(key)

    def info(self) -> Dict[str, Any]:
        return {"active_count": len(self._tasks), "keys": list(self._tasks)}
