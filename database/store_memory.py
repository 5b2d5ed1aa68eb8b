"""
InMemoryDelayedStore — Sorted-list backed store for development and testing.

Features:
  - Zero dependencies (no Redis)
  - Same interface and invariants as RedisDelayedStore
  - Safe across asyncio tasks: every mutation runs under one lock
  - All data lost on process restart

Best for: local development, unit tests, several schedulers in one event loop.
"""
from __future__ import annotations

import asyncio
import bisect
import structlog
from collections import deque
from typing import Any, Optional

from database.store_base import BaseDelayedStore
from models.schemas import ScheduledItem, Timestamp, due_unix, encode_payload, to_unix

logger = structlog.get_logger()


class InMemoryDelayedStore(BaseDelayedStore):
    """
    Buckets hold encoded payloads, exactly as Redis would, so decoding and
    matching behave identically across backends.
    """

    def __init__(self):
        self._index: list[int] = []                     # ascending due timestamps
        self._buckets: dict[int, deque[str]] = {}       # ts → encoded jobs (FIFO)
        self._lock = asyncio.Lock()
        logger.info("inmemory_delayed_store_initialized")

    async def schedule(self, item: ScheduledItem) -> None:
        async with self._lock:
            bucket = self._buckets.get(item.due_at)
            if bucket is None:
                bucket = self._buckets[item.due_at] = deque()
                bisect.insort(self._index, item.due_at)
            bucket.append(item.encode())
        logger.debug("delayed_item_scheduled",
                     queue=item.queue, job_type=item.job_type, due_at=item.due_at)

    async def next_due_timestamp(self, upper_bound: Optional[Timestamp] = None) -> Optional[int]:
        bound = self._bound(upper_bound)
        if self._index and self._index[0] <= bound:
            return self._index[0]
        return None

    async def pop_one(self, timestamp: Timestamp) -> Optional[ScheduledItem]:
        ts = to_unix(timestamp)
        while True:
            async with self._lock:
                bucket = self._buckets.get(ts)
                if not bucket:
                    return None
                raw = bucket.popleft()
                if not bucket:
                    self._drop_bucket(ts)
            item = self._decode_popped(raw, ts)
            if item is not None:
                return item

    async def schedule_size(self) -> int:
        return len(self._index)

    async def timestamp_size(self, at: Timestamp) -> int:
        return len(self._buckets.get(due_unix(at), ()))

    async def remove_delayed(self, queue: str, job_type: str, args: Any = None) -> int:
        target = encode_payload(queue, job_type, args)
        removed = 0
        async with self._lock:
            for ts in list(self._index):
                removed += self._remove_from_bucket(ts, target)
        return removed

    async def remove_delayed_at(self, at: Timestamp, queue: str, job_type: str,
                                args: Any = None) -> int:
        target = encode_payload(queue, job_type, args)
        async with self._lock:
            return self._remove_from_bucket(due_unix(at), target)

    # ── Internal (lock held) ──────────────────────────────

    def _remove_from_bucket(self, ts: int, target: str) -> int:
        bucket = self._buckets.get(ts)
        if not bucket:
            return 0
        kept = deque(raw for raw in bucket if raw != target)
        removed = len(bucket) - len(kept)
        if kept:
            self._buckets[ts] = kept
        else:
            self._drop_bucket(ts)
        return removed

    def _drop_bucket(self, ts: int) -> None:
        del self._buckets[ts]
        i = bisect.bisect_left(self._index, ts)
        if i < len(self._index) and self._index[i] == ts:
            del self._index[i]
