"""
End-to-end tests through the module-level API and the shared engine.
"""
import asyncio

import pytest
import pytest_asyncio

import swrcache
from swrcache import CacheManager, get_cache_manager, set_cache_manager

from conftest import BlockingProducer, CountingProducer, eventually


@pytest_asyncio.fixture
async def engine():
    """Fresh process-wide engine for each test."""
    manager = CacheManager(options={"retry_delay": 0.001})
    set_cache_manager(manager)
    yield manager
    await manager.close()
    set_cache_manager(None)


class TestScenarios:
    """Behaviour a caller sees end to end."""

    @pytest.mark.asyncio
    async def test_second_read_within_ttl_is_served_from_cache(self, engine):
        producer = CountingProducer(default={"id": 1})

        first = await swrcache.get_or_fetch("u", producer, {"ttl": 5.0})
        assert producer.calls == 1

        refresh = BlockingProducer({"id": 2})
        second = await asyncio.wait_for(
            swrcache.get_or_fetch("u", refresh, {"ttl": 5.0}), timeout=0.5
        )

        assert first == {"id": 1}
        # Served from cache while the background refresh is still blocked
        assert second == {"id": 1}
        await asyncio.wait_for(refresh.started.wait(), timeout=1.0)
        assert producer.calls == 1
        assert get_cache_manager().get_data("u") == {"id": 1}

        refresh.release.set()
        await eventually(lambda: get_cache_manager().get_data("u") == {"id": 2})

    @pytest.mark.asyncio
    async def test_updater_mutation_without_revalidation(self, engine):
        producer = CountingProducer(default={"id": 1, "name": "Y"})
        await swrcache.fetch_now("u", producer)
        notifications = []
        swrcache.subscribe("u", lambda data, error: notifications.append(data))

        result = swrcache.mutate("u", lambda prev: {**prev, "name": "X"}, False)
        await asyncio.sleep(0.01)

        assert result == {"id": 1, "name": "X"}
        assert notifications == [{"id": 1, "name": "X"}]
        assert producer.calls == 1

    @pytest.mark.asyncio
    async def test_retries_with_backoff_then_success(self, engine):
        producer = CountingProducer(RuntimeError("1"), RuntimeError("2"), default="ok")
        loop = asyncio.get_running_loop()

        started = loop.time()
        result = await swrcache.fetch_now("u", producer, {"retries": 2, "retry_delay": 0.1})

        assert result == "ok"
        assert producer.calls == 3
        assert loop.time() - started >= 0.29

    @pytest.mark.asyncio
    async def test_clear_stops_polling_immediately(self, engine):
        await swrcache.fetch_now("u", CountingProducer(default=1), {"refresh_interval": 3.0})
        assert swrcache.has_active_polling("u") is True

        assert swrcache.clear_cache("u") == 1
        assert swrcache.has_active_polling("u") is False
        assert swrcache.polling_info()["active_count"] == 0


class TestModuleApi:
    """Module-level functions delegate to the shared engine."""

    @pytest.mark.asyncio
    async def test_functions_share_one_engine(self, engine):
        assert get_cache_manager() is engine

        await swrcache.fetch_now("a", CountingProducer(default=1))
        assert swrcache.cache_info() == {"size": 1, "keys": ["a"]}

    @pytest.mark.asyncio
    async def test_cancel_through_module_api(self, engine):
        task = asyncio.ensure_future(swrcache.fetch_now("a", BlockingProducer(1)))
        await asyncio.sleep(0.01)

        assert swrcache.cancellation_info()["keys"] == ["a"]
        assert swrcache.cancel("a") is True
        assert swrcache.is_cancelled("a") is True
        with pytest.raises(swrcache.CancellationError):
            await task
        assert swrcache.cancel_all() == 0

    @pytest.mark.asyncio
    async def test_cleanup_resets_everything(self, engine):
        calls = []
        await swrcache.fetch_now("a", CountingProducer(default=1), {"refresh_interval": 1.0})
        swrcache.subscribe("a", lambda data, error: calls.append(data))

        swrcache.cleanup()

        assert swrcache.cache_info()["size"] == 0
        assert swrcache.polling_info()["active_count"] == 0
        swrcache.mutate("a", 2)
        assert calls == []

    @pytest.mark.asyncio
    async def test_trigger_revalidation_skips_young_entries(self, engine):
        await swrcache.fetch_now("a", CountingProducer(default=1))
        assert swrcache.trigger_revalidation() == 0

    def test_default_options_reflect_settings(self):
        assert swrcache.DEFAULT_OPTIONS.refresh_interval == 0
        assert swrcache.DEFAULT_OPTIONS.signal is None

    def test_get_cache_manager_creates_instance_lazily(self):
        set_cache_manager(None)
        try:
            manager = get_cache_manager()
            assert get_cache_manager() is manager
        finally:
            manager.detach()
            set_cache_manager(None)

    @pytest.mark.asyncio
    async def test_instances_are_isolated(self, engine):
        other = CacheManager()
        await other.fetch_now("a", CountingProducer(default=1))

        assert other.cache_info()["size"] == 1
        assert swrcache.cache_info()["size"] == 0
        await other.close()
