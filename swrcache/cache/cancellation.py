"""
Key-scoped request cancellation.

Each cache key owns at most one live CancellationToken. Timeouts and
caller-supplied signals are folded into a single composite signal, so
"cancel", "timeout" and "external abort" all travel the same code path.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger("cache.cancellation")

SignalListener = Callable[["CancellationSignal"], None]


class CancellationError(Exception):
    """Raised when a request is aborted by its token, a timeout or an external signal."""


def is_cancellation_error(error: BaseException) -> bool:
    """Check whether an exception means "aborted" rather than "failed"."""
    return isinstance(error, (CancellationError, asyncio.CancelledError))


def create_cancellation_error(
    key: str,
    original: Optional[BaseException] = None,
) -> CancellationError:
    """Build the error surfaced to callers of a cancelled request."""
    detail = f": {original}" if original is not None and str(original) else ""
    return CancellationError(f'Request for "{key}" was cancelled{detail}')


class CancellationSignal:
    """
    One-way abort flag that can be observed and awaited.

    Once aborted a signal never resets. Listeners fire exactly once, in
    registration order; a listener that raises is logged and skipped.
    """

    def __init__(self):
        self._aborted = False
        self._reason: Optional[BaseException] = None
        self._listeners: List[SignalListener] = []
        self._waiters: List[asyncio.Future] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[BaseException]:
        return self._reason

    def add_listener(self, listener: SignalListener) -> None:
        if not self._aborted and listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: SignalListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _abort(self, reason: Optional[BaseException] = None) -> bool:
        if self._aborted:
            return False
        self._aborted = True
        self._reason = reason or CancellationError("Operation was cancelled")

        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("Error in cancellation listener")
        return True

    def error(self) -> BaseException:
        """The exception describing why this signal aborted."""
        if isinstance(self._reason, CancellationError):
            return self._reason
        return CancellationError(str(self._reason) if self._reason else "Operation was cancelled")

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise self.error()

    async def wait(self) -> None:
        """Suspend until the signal aborts."""
        if self._aborted:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for ``seconds`` unless the signal aborts first.

        Raises:
            CancellationError: If the signal is or becomes aborted
        """
        self.raise_if_aborted()
        try:
            await asyncio.wait_for(self.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise self.error()

    async def race(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await ``awaitable`` but give up as soon as the signal aborts.

        Work that ignores the signal is cancelled and abandoned; the caller
        sees a CancellationError either way.
        """
        if self._aborted:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise self.error()
        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            watcher.cancel()
            raise

        if self._aborted:
            _discard(work)
            raise self.error()

        watcher.cancel()
        if work.cancelled():
            raise CancellationError("Operation was cancelled by the producer")
        return work.result()


class CombinedSignal(CancellationSignal):
    """Aborts as soon as any of its source signals aborts."""

    def __init__(self, sources: List[CancellationSignal]):
        super().__init__()
        self._sources = sources
        for source in sources:
            if source.aborted:
                self._abort(source.reason)
                return
        for source in sources:
            source.add_listener(self._on_source_abort)

    def _on_source_abort(self, source: CancellationSignal) -> None:
        self._abort(source.reason)
        self.detach()

    def detach(self) -> None:
        """Stop listening to the sources."""
        for source in self._sources:
            source.remove_listener(self._on_source_abort)


class TimeoutSignal(CancellationSignal):
    """Signal that aborts itself after a delay; ``cancel()`` disarms it."""

    def __init__(self, seconds: float):
        super().__init__()
        self.seconds = seconds
        self._handle: Optional[asyncio.TimerHandle] = None
        if seconds > 0:
            loop = asyncio.get_running_loop()
            self._handle = loop.call_later(seconds, self._expire)

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def _expire(self) -> None:
        self._handle = None
        self._abort(CancellationError(f"Request timed out after {self.seconds}s"))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class CancellationToken:
    """Abort handle for one request; ``signal`` is handed to the producer."""

    def __init__(self, key: Optional[str] = None):
        self.key = key
        self.signal = CancellationSignal()

    @property
    def cancelled(self) -> bool:
        return self.signal.aborted

    def cancel(self, reason: Optional[BaseException] = None) -> bool:
        """Abort the signal. Returns False if it was already aborted."""
        if reason is None:
            label = f' for "{self.key}"' if self.key is not None else ""
            reason = CancellationError(f"Request{label} was cancelled")
        return self.signal._abort(reason)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancellationToken(key={self.key!r}, {state})"


class CancellationRegistry:
    """
    Owns the per-key cancellation tokens.

    Keeps a ledger of cancelled keys so ``is_cancelled`` stays answerable
    after the token itself has been discarded.
    """

    def __init__(self):
        self._tokens: Dict[str, CancellationToken] = {}
        self._cancelled_keys: Set[str] = set()

    def create_token(self, key: str) -> CancellationToken:
        """Cancel any live token for ``key`` and replace it with a fresh one."""
        self.cancel(key)
        self._cancelled_keys.discard(key)
        token = CancellationToken(key)
        self._tokens[key] = token
        return token

    def cancel(self, key: str) -> bool:
        """
        Cancel the live request for ``key``.

        Returns:
            True if a live token was aborted
        """
        token = self._tokens.get(key)
        if token is None or token.cancelled:
            return False
        token.cancel()
        self._cancelled_keys.add(key)
        del self._tokens[key]
        logger.debug(f"Cancelled request for {key}")
        return True

    def cancel_all(self) -> int:
        """Cancel every live token; returns how many were aborted."""
        count = 0
        for key, token in self._tokens.items():
            if not token.cancelled:
                token.cancel()
                self._cancelled_keys.add(key)
                count += 1
        self._tokens.clear()
        if count:
            logger.info(f"Cancelled {count} in-flight request(s)")
        return count

    def is_cancelled(self, key: str) -> bool:
        return key in self._cancelled_keys

    def release(self, key: str, token: Optional[CancellationToken] = None) -> None:
        """
        Forget the token for ``key`` without aborting it.

        When ``token`` is given, only that exact token is released.
        """
        current = self._tokens.get(key)
        if current is None:
            return
        if token is not None and current is not token:
            return
        del self._tokens[key]

    def has_token(self, key: str) -> bool:
        token = self._tokens.get(key)
        return token is not None and not token.cancelled

    def get_token(self, key: str) -> Optional[CancellationToken]:
        return self._tokens.get(key)

    def combine(self, *signals: Optional[CancellationSignal]) -> CombinedSignal:
        """Derive a signal that aborts when any of ``signals`` aborts."""
        return CombinedSignal([signal for signal in signals if signal is not None])

    def timeout_signal(self, seconds: float) -> TimeoutSignal:
        """A signal that aborts after ``seconds``; never fires when ``seconds`` is 0."""
        return TimeoutSignal(seconds)

    def active_count(self) -> int:
        return sum(1 for token in self._tokens.values() if not token.cancelled)

    def info(self) -> Dict[str, Any]:
        keys = [key for key, token in self._tokens.items() if not token.cancelled]
        return {"active_count": len(keys), "keys": keys}


def _discard(task: asyncio.Future) -> None:
    """Cancel an abandoned task and mark any stored exception as retrieved."""
    if not task.done():
        task.cancel()
    elif not task.cancelled():
        task.exception()
