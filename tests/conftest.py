"""Shared test fixtures for the delayed scheduler."""
import pytest
import pytest_asyncio
import structlog
from fakeredis import aioredis as fake_aioredis

from config.settings import SchedulerConfig, reset_settings
from core.events import EventRegistry
from core.scheduler import DelayedScheduler
from database.store_factory import reset_store
from database.store_memory import InMemoryDelayedStore
from database.store_redis import RedisDelayedStore
from job_queue.message_queue import InMemoryDispatchQueue, reset_dispatch_queue

# A fixed instant well in the past, so "due" never depends on the wall clock.
T = 1_700_000_000


@pytest.fixture(autouse=True)
def _reset_singletons():
    yield
    reset_store()
    reset_dispatch_queue()
    reset_settings()
    structlog.reset_defaults()


@pytest_asyncio.fixture
async def redis_client():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture(params=["memory", "redis"])
async def store(request):
    """Every store-level test runs against both backends."""
    if request.param == "memory":
        yield InMemoryDelayedStore()
        return
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield RedisDelayedStore(namespace="test:", client=client)
    await client.flushall()
    await client.aclose()


@pytest.fixture
def dispatch_queue() -> InMemoryDispatchQueue:
    return InMemoryDispatchQueue()


@pytest.fixture
def events() -> EventRegistry:
    return EventRegistry()


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(poll_interval=0.01, log_level="off", update_proctitle=False)


@pytest.fixture
def scheduler(store, dispatch_queue, scheduler_config, events) -> DelayedScheduler:
    return DelayedScheduler(store, dispatch_queue, scheduler_config, events)
