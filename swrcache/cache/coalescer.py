"""
Request coalescing to prevent duplicate producer calls.

When several coroutines ask for the same key while a fetch is running,
only one producer call is made and all of them share its outcome.
"""
import asyncio
import time
import logging
from typing import Dict, Optional, Any
from dataclasses import dataclass, field

from .cancellation import CancellationToken

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch."""
    task: asyncio.Task
    token: CancellationToken
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Keyed map of in-flight fetch tasks.

    Pattern:
    - First request for a key registers its task
    - Later requests for the same key join and await that task
    - The task removes itself when it finishes

    There is no lock: the map is only touched between await points on a
    single event loop.
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}

    def get(self, cache_key: str) -> Optional[InFlightRequest]:
        return self._in_flight.get(cache_key)

    def has(self, cache_key: str) -> bool:
        return cache_key in self._in_flight

    def register(
        self,
        cache_key: str,
        task: asyncio.Task,
        token: CancellationToken,
    ) -> InFlightRequest:
        """Record ``task`` as the in-flight fetch for ``cache_key``."""
        request = InFlightRequest(task=task, token=token)
        self._in_flight[cache_key] = request
        # Joiners may all go away; never leave an exception unretrieved
        task.add_done_callback(_retrieve_exception)
        logger.debug(f"Initiating fetch for {cache_key}")
        return request

    def join(self, cache_key: str) -> Optional[InFlightRequest]:
        """Attach to the in-flight fetch for ``cache_key``, if there is one."""
        request = self._in_flight.get(cache_key)
        if request is not None:
            request.waiter_count += 1
            logger.debug(
                f"Coalescing request for {cache_key} "
                f"(waiters: {request.waiter_count})"
            )
        return request

    def drop(self, cache_key: str, request: Optional[InFlightRequest] = None) -> bool:
        """
        Forget the in-flight fetch for ``cache_key``.

        When ``request`` is given, the entry is only removed if it is still
        that request (a superseding fetch may already own the key).
        """
        current = self._in_flight.get(cache_key)
        if current is None:
            return False
        if request is not None and current is not request:
            return False
        del self._in_flight[cache_key]
        return True

    def clear(self) -> None:
        self._in_flight.clear()

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }


def _retrieve_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()
