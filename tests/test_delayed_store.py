"""
Tests for the delayed store backends.

Every test in this module runs twice through the parametrized `store`
fixture: once against InMemoryDelayedStore and once against
RedisDelayedStore on fakeredis (Lua scripts included).

Covers:
  - schedule / next_due_timestamp ordering and bounds
  - pop_one FIFO order, bucket cleanup, empty results
  - concurrent pops: no duplicates, no loss
  - enqueue_at / enqueue_in / removal helpers
"""
import asyncio
from datetime import datetime, timezone

import pytest

from database.errors import InvalidJob
from models.schemas import ScheduledItem, now_unix

T = 1_700_000_000


def item(due_at, queue="emails", job_type="Welcome", args=None):
    return ScheduledItem(queue=queue, job_type=job_type, args=args if args is not None else ["u1"],
                         due_at=due_at)


# ──────────────────────────────────────────────────────────────
#  next_due_timestamp
# ──────────────────────────────────────────────────────────────

class TestNextDueTimestamp:
    @pytest.mark.asyncio
    async def test_empty_store_returns_none(self, store):
        assert await store.next_due_timestamp(T) is None
        assert await store.next_due_timestamp() is None

    @pytest.mark.asyncio
    async def test_returns_smallest_due_timestamp(self, store):
        for ts in (T + 20, T, T + 10):
            await store.schedule(item(ts))
        assert await store.next_due_timestamp(T + 100) == T

    @pytest.mark.asyncio
    async def test_never_returns_future_timestamp(self, store):
        await store.schedule(item(T + 10))
        assert await store.next_due_timestamp(T) is None
        assert await store.next_due_timestamp(T + 9) is None
        assert await store.next_due_timestamp(T + 10) == T + 10

    @pytest.mark.asyncio
    async def test_default_bound_is_now(self, store):
        past = now_unix() - 5
        await store.schedule(item(now_unix() + 3600))
        assert await store.next_due_timestamp() is None
        await store.schedule(item(past))
        assert await store.next_due_timestamp() == past

    @pytest.mark.asyncio
    async def test_accepts_datetime_bound(self, store):
        await store.schedule(item(T))
        bound = datetime.fromtimestamp(T, tz=timezone.utc)
        assert await store.next_due_timestamp(bound) == T

    @pytest.mark.asyncio
    async def test_is_read_only(self, store):
        await store.schedule(item(T))
        for _ in range(3):
            assert await store.next_due_timestamp(T) == T
        assert await store.timestamp_size(T) == 1

    @pytest.mark.asyncio
    async def test_walks_timestamps_in_order_as_they_drain(self, store):
        stamps = [T, T + 1, T + 5, T + 9]
        for ts in reversed(stamps):
            await store.schedule(item(ts))
        seen = []
        while (ts := await store.next_due_timestamp(T + 100)) is not None:
            seen.append(ts)
            assert await store.pop_one(ts) is not None
        assert seen == stamps


# ──────────────────────────────────────────────────────────────
#  pop_one
# ──────────────────────────────────────────────────────────────

class TestPopOne:
    @pytest.mark.asyncio
    async def test_pop_returns_scheduled_item(self, store):
        scheduled = item(T, args=["u1", 42, {"plan": "pro"}, None, [1, 2]])
        await store.schedule(scheduled)
        popped = await store.pop_one(T)
        assert popped == scheduled
        assert popped.args == ["u1", 42, {"plan": "pro"}, None, [1, 2]]

    @pytest.mark.asyncio
    async def test_pop_is_fifo_within_bucket(self, store):
        for n in range(3):
            await store.schedule(item(T, args=[n]))
        popped = [await store.pop_one(T) for _ in range(3)]
        assert [p.args for p in popped] == [[0], [1], [2]]

    @pytest.mark.asyncio
    async def test_pop_empty_bucket_returns_none(self, store):
        assert await store.pop_one(T) is None

    @pytest.mark.asyncio
    async def test_last_pop_removes_timestamp(self, store):
        await store.schedule(item(T))
        await store.schedule(item(T))
        await store.pop_one(T)
        assert await store.next_due_timestamp(T) == T
        await store.pop_one(T)
        assert await store.next_due_timestamp(T) is None
        assert await store.schedule_size() == 0
        assert await store.pop_one(T) is None

    @pytest.mark.asyncio
    async def test_pop_leaves_other_buckets_alone(self, store):
        await store.schedule(item(T))
        await store.schedule(item(T + 10))
        await store.pop_one(T)
        assert await store.next_due_timestamp(T) is None
        assert await store.next_due_timestamp(T + 10) == T + 10

    @pytest.mark.asyncio
    async def test_empty_list_args_round_trip(self, store):
        await store.schedule(item(T, args=[]))
        assert (await store.pop_one(T)).args == []


# ──────────────────────────────────────────────────────────────
#  Concurrency
# ──────────────────────────────────────────────────────────────

class TestConcurrentPops:
    @pytest.mark.asyncio
    async def test_n_items_yield_exactly_n_pops(self, store):
        n = 25
        for i in range(n):
            await store.schedule(item(T, args=[i]))

        async def popper():
            got = []
            while (popped := await store.pop_one(T)) is not None:
                got.append(popped.args[0])
            return got

        results = await asyncio.gather(*(popper() for _ in range(5)))
        flat = [x for r in results for x in r]
        assert sorted(flat) == list(range(n))
        assert await store.next_due_timestamp(T) is None

    @pytest.mark.asyncio
    async def test_single_item_race(self, store):
        await store.schedule(item(T))
        a, b = await asyncio.gather(store.pop_one(T), store.pop_one(T))
        assert [a is None, b is None].count(True) == 1


# ──────────────────────────────────────────────────────────────
#  Convenience and management operations
# ──────────────────────────────────────────────────────────────

class TestStoreManagement:
    @pytest.mark.asyncio
    async def test_enqueue_at_datetime(self, store):
        when = datetime.fromtimestamp(T, tz=timezone.utc)
        scheduled = await store.enqueue_at(when, "emails", "Welcome", ["u1"])
        assert scheduled.due_at == T
        assert await store.timestamp_size(T) == 1

    @pytest.mark.asyncio
    async def test_enqueue_in_is_in_the_future(self, store):
        before = now_unix()
        scheduled = await store.enqueue_in(3600, "emails", "Reminder")
        assert scheduled.due_at >= before + 3600
        assert await store.next_due_timestamp() is None

    @pytest.mark.asyncio
    async def test_enqueue_requires_queue_and_class(self, store):
        with pytest.raises(InvalidJob):
            await store.enqueue_at(T, "", "Welcome")
        with pytest.raises(InvalidJob):
            await store.enqueue_at(T, "emails", "")
        assert await store.schedule_size() == 0

    @pytest.mark.asyncio
    async def test_sizes(self, store):
        await store.schedule(item(T))
        await store.schedule(item(T))
        await store.schedule(item(T + 1))
        assert await store.schedule_size() == 2
        assert await store.timestamp_size(T) == 2
        assert await store.timestamp_size(T + 1) == 1
        assert await store.timestamp_size(T + 2) == 0

    @pytest.mark.asyncio
    async def test_remove_delayed_across_timestamps(self, store):
        await store.schedule(item(T, args=["u1"]))
        await store.schedule(item(T + 5, args=["u1"]))
        await store.schedule(item(T + 5, args=["u2"]))
        removed = await store.remove_delayed("emails", "Welcome", ["u1"])
        assert removed == 2
        assert await store.schedule_size() == 1
        assert await store.next_due_timestamp(T + 10) == T + 5
        assert (await store.pop_one(T + 5)).args == ["u2"]

    @pytest.mark.asyncio
    async def test_remove_delayed_at_only_touches_one_timestamp(self, store):
        await store.schedule(item(T))
        await store.schedule(item(T + 5))
        assert await store.remove_delayed_at(T, "emails", "Welcome", ["u1"]) == 1
        assert await store.next_due_timestamp(T) is None
        assert await store.timestamp_size(T + 5) == 1

    @pytest.mark.asyncio
    async def test_remove_non_matching_is_zero(self, store):
        await store.schedule(item(T))
        assert await store.remove_delayed("emails", "Welcome", ["other"]) == 0
        assert await store.remove_delayed_at(T + 1, "emails", "Welcome", ["u1"]) == 0
        assert await store.schedule_size() == 1

    @pytest.mark.asyncio
    async def test_fractional_due_time_is_not_dispatched_early(self, store):
        scheduled = await store.enqueue_at(T + 0.5, "emails", "Welcome", ["u1"])
        assert scheduled.due_at == T + 1
        assert await store.next_due_timestamp(T) is None
        assert await store.next_due_timestamp(T + 1) == T + 1

    @pytest.mark.asyncio
    async def test_fractional_lookup_finds_rounded_bucket(self, store):
        await store.enqueue_at(T + 0.5, "emails", "Welcome", ["u1"])
        assert await store.timestamp_size(T + 0.5) == 1
        assert await store.remove_delayed_at(T + 0.5, "emails", "Welcome", ["u1"]) == 1
        assert await store.schedule_size() == 0

    @pytest.mark.asyncio
    async def test_hash_args_round_trip(self, store):
        await store.enqueue_at(T, "emails", "Welcome", {"name": "Chris"})
        popped = await store.pop_one(T)
        assert popped.args == {"name": "Chris"}
