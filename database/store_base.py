"""
Abstract Delayed Store — Interface for all delayed-schedule backends.

Implementations:
  - RedisDelayedStore    (sorted set index + one list per timestamp, shared between processes)
  - InMemoryDelayedStore (sorted list + deques, single-process, no persistence)

Layout shared by both backends:
  index                  ordered set of due timestamps, ascending
  bucket(ts)             FIFO of encoded jobs due at ts

Every timestamp in the index has at least one job in its bucket: the pop
that empties a bucket removes its index key in the same atomic step.
"""
from __future__ import annotations

import structlog
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import ValidationError

from database.errors import InvalidJob
from models.schemas import ScheduledItem, Timestamp, now_unix, to_unix

logger = structlog.get_logger()


def validate_job(queue: str, job_type: str) -> None:
    """Ensure a job names both a queue and a job type."""
    if not queue:
        raise InvalidJob("Jobs must be put in a queue.")
    if not job_type:
        raise InvalidJob("Jobs must be given a class.")


class BaseDelayedStore(ABC):
    """Interface that all delayed store backends must implement."""

    # ── Core protocol ─────────────────────────────────────────

    @abstractmethod
    async def schedule(self, item: ScheduledItem) -> None:
        """Append item to the bucket for item.due_at, creating the bucket if needed."""
        ...

    @abstractmethod
    async def next_due_timestamp(self, upper_bound: Optional[Timestamp] = None) -> Optional[int]:
        """Smallest indexed timestamp <= upper_bound (default: now), or None. Read-only."""
        ...

    @abstractmethod
    async def pop_one(self, timestamp: Timestamp) -> Optional[ScheduledItem]:
        """Atomically remove and return the oldest item due at timestamp, or None."""
        ...

    # ── Inspection / management ───────────────────────────────

    @abstractmethod
    async def schedule_size(self) -> int:
        """Number of timestamps that still hold delayed jobs."""
        ...

    @abstractmethod
    async def timestamp_size(self, at: Timestamp) -> int:
        """Number of delayed jobs due at one timestamp."""
        ...

    @abstractmethod
    async def remove_delayed(self, queue: str, job_type: str, args: Any = None) -> int:
        """Remove every matching delayed job. Returns the number removed."""
        ...

    @abstractmethod
    async def remove_delayed_at(self, at: Timestamp, queue: str, job_type: str,
                                args: Any = None) -> int:
        """Remove matching delayed jobs from one timestamp. Returns the number removed."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None

    # ── Convenience ───────────────────────────────────────────

    async def enqueue_at(self, at: Timestamp, queue: str, job_type: str,
                         args: Any = None) -> ScheduledItem:
        """Schedule a job to be moved onto `queue` at the given time."""
        validate_job(queue, job_type)
        item = ScheduledItem.at(at, queue, job_type, args)
        await self.schedule(item)
        return item

    async def enqueue_in(self, seconds: int, queue: str, job_type: str,
                         args: Any = None) -> ScheduledItem:
        """Schedule a job to be moved onto `queue` after `seconds`."""
        return await self.enqueue_at(now_unix() + int(seconds), queue, job_type, args)

    @staticmethod
    def _bound(upper_bound: Optional[Timestamp]) -> int:
        return now_unix() if upper_bound is None else to_unix(upper_bound)

    @staticmethod
    def _decode_popped(raw, ts: int) -> Optional[ScheduledItem]:
        """
        Decode a payload that has already left the store. A payload that will
        not decode is logged verbatim, so it can be replayed by hand, and skipped.
        """
        try:
            return ScheduledItem.decode(raw, ts)
        except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.error("delayed_item_undecodable", timestamp=ts, raw=raw, error=str(e))
            return None
