"""
Delayed Scheduler — Moves due delayed jobs onto their dispatch queues.

Every `poll_interval` seconds the scheduler drains the delayed store:

    next_due_timestamp() ──▶ pop_one(ts) ──▶ beforeDelayedEnqueue ──▶ submit()
          ▲                      │ (until None)
          └──────────────────────┘ (until no timestamp is due)

Any number of schedulers may run against the same store; the store's
atomic pop is the only coordination between them. Pop happens before
submit, so a job whose submit fails is logged and dropped (at-most-once).

Usage:
    scheduler = DelayedScheduler(store, queue, SchedulerConfig(poll_interval=5), events)
    stop = asyncio.Event()
    await scheduler.run(stop)          # until stop.set()
    await scheduler.run_once()         # single drain, no sleep
"""
from __future__ import annotations

import asyncio
import structlog
from enum import Enum
from typing import Optional

from config.settings import SchedulerConfig
from core.events import BEFORE_DELAYED_ENQUEUE, EventRegistry
from database.errors import DispatchFailure, StoreUnavailable
from database.store_base import BaseDelayedStore
from job_queue.message_queue import DispatchQueue
from models.schemas import ScheduledItem, Timestamp
from utils.proctitle import update_proc_line

logger = structlog.get_logger()

VERSION = "1.0.0"


class SchedulerState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"


class DelayedScheduler:
    """Polls the delayed store and submits due jobs to the dispatch queue."""

    def __init__(
        self,
        store: BaseDelayedStore,
        queue: DispatchQueue,
        config: SchedulerConfig = None,
        events: EventRegistry = None,
    ):
        self.store = store
        self.queue = queue
        self.config = config or SchedulerConfig()
        self.events = events or EventRegistry()
        self.state = SchedulerState.IDLE
        self._stop_event: Optional[asyncio.Event] = None
        self._wake_event = asyncio.Event()
        self._cycle_dispatched = 0

    # ── Run loop ──────────────────────────────────────────

    async def run(self, stop_event: asyncio.Event = None, interval: float = None) -> None:
        """Drain, then sleep, until stop_event is set."""
        if interval is None:
            interval = self.config.poll_interval
        elif interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")

        self._stop_event = stop_event or asyncio.Event()
        self._update_proc_line("Starting")
        logger.info("delayed_scheduler_started", interval=interval, version=VERSION)

        while not self._stop_event.is_set():
            await self.run_once()
            if self._stop_event.is_set():
                break
            await self._sleep(interval)

        logger.info("delayed_scheduler_stopped")

    async def run_once(self, upper_bound: Optional[Timestamp] = None) -> int:
        """
        One poll cycle. Recoverable failures are logged and swallowed so the
        next cycle can retry; returns the number of jobs submitted.
        """
        try:
            return await self.drain_all(upper_bound)
        except StoreUnavailable as e:
            logger.error("drain_cycle_store_unavailable",
                         error=str(e),
                         dispatched=self._cycle_dispatched)
        except DispatchFailure as e:
            logger.error("delayed_item_lost",
                         queue=e.queue,
                         job_type=e.job_type,
                         args=e.job_args,
                         error=str(e.cause))
        except Exception as e:
            logger.error("drain_cycle_failed", error=str(e), exc_info=True)
        finally:
            self.state = SchedulerState.IDLE
        return self._cycle_dispatched

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        self._wake_event.set()

    def wake(self) -> None:
        """Cut the current sleep short and drain immediately."""
        self._wake_event.set()

    async def _sleep(self, interval: float) -> None:
        self._update_proc_line(f"Sleeping for {interval:g}s")
        waiters = [
            asyncio.ensure_future(self._stop_event.wait()),
            asyncio.ensure_future(self._wake_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=interval, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        self._wake_event.clear()

    # ── Draining ──────────────────────────────────────────

    async def drain_all(self, upper_bound: Optional[Timestamp] = None) -> int:
        """Drain every timestamp that is due. Returns the number of jobs submitted."""
        self.state = SchedulerState.DRAINING
        self._cycle_dispatched = 0
        try:
            while True:
                timestamp = await self.store.next_due_timestamp(upper_bound)
                if timestamp is None:
                    break
                self._update_proc_line("Processing Delayed Items")
                await self.drain_timestamp(timestamp)
        finally:
            self.state = SchedulerState.IDLE
        return self._cycle_dispatched

    async def drain_timestamp(self, timestamp: Timestamp) -> int:
        """Pop and submit every job due at timestamp. Zero if another scheduler got there first."""
        count = 0
        while True:
            item = await self.store.pop_one(timestamp)
            if item is None:
                break
            await self._enqueue(item)
            count += 1
            self._cycle_dispatched += 1
        if count:
            logger.debug("delayed_timestamp_drained", timestamp=timestamp, count=count)
        return count

    async def _enqueue(self, item: ScheduledItem) -> None:
        logger.info("delayed_item_queued",
                    queue=item.queue,
                    job_type=item.job_type,
                    due_at=item.due_at)

        await self.events.trigger(BEFORE_DELAYED_ENQUEUE, item.notification())

        try:
            await self.queue.submit(item.queue, item.job_type, item.args)
        except DispatchFailure:
            raise
        except Exception as e:
            raise DispatchFailure(item.queue, item.job_type, item.args, cause=e) from e

    def _update_proc_line(self, status: str) -> None:
        if self.config.update_proctitle:
            update_proc_line(status, VERSION)
