"""
RedisDelayedStore — Production delayed schedule shared by any number of schedulers.

Key layout (resque-scheduler compatible):
  <ns>delayed_queue_schedule   sorted set, member = score = due timestamp
  <ns>delayed:<ts>             list of encoded jobs due at <ts>, FIFO

Popping is a single Lua script: LPOP the bucket and, if that emptied it,
DEL the list and ZREM the timestamp in the same server-side step. Two
schedulers racing on one bucket therefore never see the same job twice, and
a bucket that has been drained disappears from the index atomically.
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Any, Optional

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from database.errors import StoreUnavailable
from database.store_base import BaseDelayedStore
from models.schemas import ScheduledItem, Timestamp, due_unix, encode_payload, to_unix

logger = structlog.get_logger()

# KEYS[1] = bucket list, KEYS[2] = schedule index; ARGV[1] = timestamp member
POP_SCRIPT = """
local item = redis.call('LPOP', KEYS[1])
if redis.call('LLEN', KEYS[1]) == 0 then
    redis.call('DEL', KEYS[1])
    redis.call('ZREM', KEYS[2], ARGV[1])
end
return item
"""

# KEYS[1] = bucket list, KEYS[2] = schedule index; ARGV[1] = timestamp, ARGV[2] = payload
REMOVE_SCRIPT = """
local removed = redis.call('LREM', KEYS[1], 0, ARGV[2])
if redis.call('LLEN', KEYS[1]) == 0 then
    redis.call('DEL', KEYS[1])
    redis.call('ZREM', KEYS[2], ARGV[1])
end
return removed
"""


class RedisDelayedStore(BaseDelayedStore):
    """Delayed store backed by a Redis sorted set plus one list per timestamp."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        namespace: str = "resque:",
        socket_timeout: Optional[float] = 5.0,
        client=None,
    ):
        self._redis_url = redis_url
        self._namespace = namespace
        self._socket_timeout = socket_timeout
        self._redis = client
        self._pop_script = None
        self._remove_script = None
        if client is not None:
            self._register_scripts()

    # ── Connection ────────────────────────────────────────

    @retry(
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=0.5, max=4),
        reraise=True,
    )
    async def _open(self):
        import redis.asyncio as aioredis
        client = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            socket_timeout=self._socket_timeout,
        )
        await client.ping()
        return client

    async def connect(self) -> None:
        if self._redis is not None:
            return
        try:
            self._redis = await self._open()
        except RedisError as e:
            raise StoreUnavailable(f"Cannot connect to {self._redis_url}", cause=e) from e
        self._register_scripts()
        logger.info("redis_delayed_store_connected", url=self._redis_url)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _register_scripts(self) -> None:
        self._pop_script = self._redis.register_script(POP_SCRIPT)
        self._remove_script = self._redis.register_script(REMOVE_SCRIPT)

    @asynccontextmanager
    async def _guard(self, op: str):
        """Translate transport errors into StoreUnavailable."""
        await self.connect()
        try:
            yield
        except RedisError as e:
            logger.warning("redis_delayed_store_error", op=op, error=str(e))
            raise StoreUnavailable(f"Delayed store {op} failed: {e}", cause=e) from e

    # ── Keys ──────────────────────────────────────────────

    @property
    def schedule_key(self) -> str:
        return f"{self._namespace}delayed_queue_schedule"

    def bucket_key(self, ts: int) -> str:
        return f"{self._namespace}delayed:{ts}"

    # ── Core protocol ─────────────────────────────────────

    async def schedule(self, item: ScheduledItem) -> None:
        async with self._guard("schedule"):
            pipe = self._redis.pipeline(transaction=True)
            pipe.rpush(self.bucket_key(item.due_at), item.encode())
            pipe.zadd(self.schedule_key, {str(item.due_at): item.due_at})
            await pipe.execute()
        logger.debug("delayed_item_scheduled",
                     queue=item.queue, job_type=item.job_type, due_at=item.due_at)

    async def next_due_timestamp(self, upper_bound: Optional[Timestamp] = None) -> Optional[int]:
        bound = self._bound(upper_bound)
        async with self._guard("next_due_timestamp"):
            members = await self._redis.zrangebyscore(
                self.schedule_key, "-inf", bound, start=0, num=1,
            )
        if not members:
            return None
        return int(members[0])

    async def pop_one(self, timestamp: Timestamp) -> Optional[ScheduledItem]:
        ts = to_unix(timestamp)
        while True:
            async with self._guard("pop_one"):
                raw = await self._pop_script(
                    keys=[self.bucket_key(ts), self.schedule_key],
                    args=[str(ts)],
                )
            if raw is None:
                return None
            item = self._decode_popped(raw, ts)
            if item is not None:
                return item

    # ── Inspection / management ───────────────────────────

    async def schedule_size(self) -> int:
        async with self._guard("schedule_size"):
            return await self._redis.zcard(self.schedule_key)

    async def timestamp_size(self, at: Timestamp) -> int:
        async with self._guard("timestamp_size"):
            return await self._redis.llen(self.bucket_key(due_unix(at)))

    async def remove_delayed(self, queue: str, job_type: str, args: Any = None) -> int:
        async with self._guard("remove_delayed"):
            members = await self._redis.zrange(self.schedule_key, 0, -1)
        removed = 0
        for member in members:
            removed += await self.remove_delayed_at(int(member), queue, job_type, args)
        return removed

    async def remove_delayed_at(self, at: Timestamp, queue: str, job_type: str,
                                args: Any = None) -> int:
        ts = due_unix(at)
        async with self._guard("remove_delayed_at"):
            removed = await self._remove_script(
                keys=[self.bucket_key(ts), self.schedule_key],
                args=[str(ts), encode_payload(queue, job_type, args)],
            )
        return int(removed or 0)
