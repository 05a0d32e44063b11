"""
Fetch coordination: deduplication, retry with backoff, cancellation.

Every refresh path (direct calls, stale-while-revalidate, polling,
focus/reconnect revalidation, mutation) goes through ``fetch_now`` so the
same guarantees apply no matter who started the fetch.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .cancellation import (
    CancellationError,
    CancellationRegistry,
    CancellationSignal,
    CancellationToken,
    create_cancellation_error,
    is_cancellation_error,
)
from .coalescer import RequestCoalescer
from .core import (
    CacheEntry,
    CacheOptions,
    OptionsLike,
    Producer,
    persistent_options,
    resolve_options,
)
from .store import CacheStore
from .subscriptions import NotificationBus

logger = logging.getLogger("cache.fetcher")


class FetchCoordinator:
    """
    The single writer of fetched data into the cache store.

    - ``get_or_fetch``: stale-while-revalidate read
    - ``fetch_now``: unconditional, deduplicated fetch with retries
    """

    def __init__(
        self,
        store: CacheStore,
        bus: NotificationBus,
        cancellation: CancellationRegistry,
        defaults: CacheOptions,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._bus = bus
        self._cancellation = cancellation
        self._defaults = defaults
        self._clock = clock
        self._coalescer = RequestCoalescer()
        self._background: Set[asyncio.Task] = set()

        self._stats = {
            "hits": 0,
            "misses": 0,
            "fetches": 0,
            "retries": 0,
            "failures": 0,
            "cancellations": 0,
            "background_refreshes": 0,
        }

    @property
    def defaults(self) -> CacheOptions:
        return self._defaults

    async def get_or_fetch(
        self,
        key: str,
        producer: Producer,
        options: OptionsLike = None,
    ) -> Any:
        """
        Return cached data for ``key`` when it is fresh, refreshing it in the
        background; otherwise fetch and wait for the result.
        """
        resolved = resolve_options(self._defaults, options)
        entry = self._store.get(key)

        if entry is None or self._store.is_expired(entry) or not entry.has_data:
            logger.info(f"CACHE MISS: {key}")
            self._stats["misses"] += 1
            return await self.fetch_now(key, producer, resolved)

        logger.debug(
            f"CACHE HIT (revalidating): {key} "
            f"[age={self._clock() - entry.timestamp:.1f}s]"
        )
        self._stats["hits"] += 1
        self.revalidate_in_background(key, producer, resolved, reason="stale-while-revalidate")
        return entry.data

    async def fetch_now(
        self,
        key: str,
        producer: Producer,
        options: OptionsLike = None,
    ) -> Any:
        """
        Fetch ``key`` now, joining an in-flight fetch for the same key.

        Raises:
            CancellationError: If the fetch was cancelled, timed out or its
                external signal aborted
            Exception: The producer's last failure once retries run out
        """
        resolved = resolve_options(self._defaults, options)

        current = self._coalescer.get(key)
        if current is not None:
            if resolved.cancel_on_revalidate:
                logger.debug(f"Superseding in-flight request for {key}")
                self._cancellation.cancel(key)
                self._coalescer.drop(key, current)
            else:
                self._coalescer.join(key)
                return await asyncio.shield(current.task)

        token = self._cancellation.create_token(key)
        task = asyncio.get_running_loop().create_task(
            self._run(key, producer, resolved, token)
        )
        self._coalescer.register(key, task, token)
        return await asyncio.shield(task)

    def revalidate_in_background(
        self,
        key: str,
        producer: Producer,
        options: OptionsLike = None,
        reason: str = "revalidate",
    ) -> Optional[asyncio.Task]:
        """
        Schedule ``fetch_now`` without waiting for it.

        Failures are logged at debug level only; the outcome is visible
        through the cache entry and subscribers.

        Returns:
            The background task, or None when no event loop is running
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, skipping {reason} for {key}")
            return None

        task = loop.create_task(self._background_fetch(key, producer, options, reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _background_fetch(
        self,
        key: str,
        producer: Producer,
        options: OptionsLike,
        reason: str,
    ) -> None:
        self._stats["background_refreshes"] += 1
        try:
            await self.fetch_now(key, producer, options)
            logger.debug(f"Background {reason} complete: {key}")
        except Exception as e:
            logger.debug(f"Background {reason} failed: {key} - {e}")

    async def _run(
        self,
        key: str,
        producer: Producer,
        options: CacheOptions,
        token: CancellationToken,
    ) -> Any:
        timeout = self._cancellation.timeout_signal(options.timeout)
        signal = self._cancellation.combine(
            token.signal,
            timeout if timeout.armed else None,
            options.signal,
        )
        try:
            data = await self._attempt(key, producer, options, signal)
        except Exception as error:
            if is_cancellation_error(error):
                # Cancelled fetches never touch the cache or subscribers
                self._stats["cancellations"] += 1
                logger.info(f"Request cancelled: {key}")
                if isinstance(error, CancellationError):
                    raise
                raise create_cancellation_error(key, error) from error
            self._record_failure(key, producer, options, error)
            raise
        else:
            self._record_success(key, producer, options, data)
            return data
        finally:
            timeout.cancel()
            signal.detach()
            current = self._coalescer.get(key)
            if current is not None and current.task is asyncio.current_task():
                self._coalescer.drop(key, current)
            self._cancellation.release(key, token)

    async def _attempt(
        self,
        key: str,
        producer: Producer,
        options: CacheOptions,
        signal: CancellationSignal,
    ) -> Any:
        """
        Run the producer up to ``retries + 1`` times.

        Backoff doubles from ``retry_delay``; the sleep between attempts
        ends early with a CancellationError when the signal aborts.
        """
        attempts = options.retries + 1

        def log_retry(state: RetryCallState) -> None:
            self._stats["retries"] += 1
            logger.warning(
                f"Fetch failed for {key} (attempt {state.attempt_number}/{attempts}), "
                f"retrying in {state.next_action.sleep:.2f}s: {state.outcome.exception()}"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=options.retry_delay, min=0),
            retry=retry_if_exception(_is_retryable),
            sleep=signal.sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                signal.raise_if_aborted()
                self._stats["fetches"] += 1
                return await signal.race(_invoke(producer, signal))

    def _record_success(
        self,
        key: str,
        producer: Producer,
        options: CacheOptions,
        data: Any,
    ) -> None:
        entry = CacheEntry(
            data=data,
            timestamp=self._clock(),
            producer=producer,
            options=persistent_options(options),
        )
        self._store.set(key, entry)
        self._store.ensure_size(options.max_entries)
        logger.debug(f"Cached fresh data for {key}")
        self._bus.notify(key, data, None)

    def _record_failure(
        self,
        key: str,
        producer: Producer,
        options: CacheOptions,
        error: Exception,
    ) -> None:
        self._stats["failures"] += 1
        logger.warning(f"Fetch failed for {key}: {error}")

        now = self._clock()
        entry = self._store.get(key)
        if entry is not None:
            # Keep the last good data next to the new error
            self._store.update(key, error=error, timestamp=now)
            data = entry.data
        else:
            self._store.set(
                key,
                CacheEntry(
                    data=None,
                    timestamp=now,
                    producer=producer,
                    options=persistent_options(options),
                    error=error,
                ),
            )
            self._store.ensure_size(options.max_entries)
            data = None
        self._bus.notify(key, data, error)

    def has_in_flight(self, key: str) -> bool:
        return self._coalescer.has(key)

    def in_flight_count(self) -> int:
        return self._coalescer.active_requests

    def clear_in_flight(self) -> None:
        """Forget in-flight requests without cancelling them."""
        self._coalescer.clear()

    async def close(self) -> None:
        """Cancel background refreshes and wait for them to finish."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get fetch statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0
        return {
            **self._stats,
            "hit_rate_percent": round(hit_rate, 1),
            "background_pending": len(self._background),
            "coalescer": self._coalescer.get_stats(),
        }


def _accepts_signal(producer: Producer) -> bool:
    """Producers may be declared as ``producer()`` or ``producer(signal)``."""
    try:
        parameters = inspect.signature(producer).parameters.values()
    except (TypeError, ValueError):
        return True
    for parameter in parameters:
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.VAR_POSITIONAL,
        ):
            return True
    return False


async def _invoke(producer: Producer, signal: CancellationSignal) -> Any:
    result = producer(signal) if _accepts_signal(producer) else producer()
    if inspect.isawaitable(result):
        return await result
    return result


def _is_retryable(error: BaseException) -> bool:
    return not is_cancellation_error(error)
