"""
Shared fixtures for the cache engine tests.
"""
import asyncio

import pytest
import pytest_asyncio

from swrcache.cache import CacheManager, ManualEnvironment


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingProducer:
    """Async producer that records its calls and replays scripted outcomes."""

    def __init__(self, *outcomes, default=None):
        self.outcomes = list(outcomes)
        self.default = default
        self.calls = 0
        self.signals = []

    async def __call__(self, signal=None):
        self.calls += 1
        self.signals.append(signal)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class BlockingProducer:
    """Async producer that waits until released."""

    def __init__(self, value=None):
        self.value = value
        self.calls = 0
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, signal=None):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        if isinstance(self.value, BaseException):
            raise self.value
        return self.value


async def eventually(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    """Wait until ``predicate()`` is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def environment():
    return ManualEnvironment()


@pytest_asyncio.fixture
async def manager(environment):
    """Isolated engine with fast retries."""
    engine = CacheManager(
        options={"retry_delay": 0.001, "ttl": 60.0},
        environment=environment,
    )
    yield engine
    await engine.close()


@pytest_asyncio.fixture
async def clocked_manager(environment, clock):
    """Engine driven by a fake clock."""
    engine = CacheManager(
        options={"retry_delay": 0.001, "ttl": 60.0},
        environment=environment,
        clock=clock,
    )
    yield engine
    await engine.close()
