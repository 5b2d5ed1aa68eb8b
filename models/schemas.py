"""
Core data models for the delayed scheduler.
These are the universal types shared across the store, queue and worker.
"""
from __future__ import annotations

import json
import math
import time
from datetime import datetime, timezone
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

Timestamp = Union[int, float, datetime]

# Job arguments: normally an ordered list, but resque producers may store a
# keyed hash instead. Either way the value is passed through untouched.
JobArgs = Any


def _as_seconds(at: Timestamp) -> float:
    if isinstance(at, datetime):
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return at.timestamp()
    return float(at)


def to_unix(at: Timestamp) -> int:
    """Whole UNIX seconds, rounded down. Used for "due up to" bounds."""
    return math.floor(_as_seconds(at))


def due_unix(at: Timestamp) -> int:
    """Whole UNIX seconds, rounded up, so a job is never filed before its due time."""
    return math.ceil(_as_seconds(at))


def now_unix() -> int:
    return int(time.time())


def build_payload(queue: str, job_type: str, args: JobArgs = None) -> dict[str, Any]:
    """Stored form of a delayed job: arguments wrapped once, as resque does."""
    return {"queue": queue, "class": job_type, "args": [[] if args is None else args]}


def encode_payload(queue: str, job_type: str, args: JobArgs = None) -> str:
    """Encode the stored form of a delayed job. Deterministic, so it can be matched for removal."""
    return json.dumps(build_payload(queue, job_type, args), separators=(",", ":"))


# ──────────────────────────────────────────────────────────────
#  ScheduledItem — one delayed job waiting for its due time
# ──────────────────────────────────────────────────────────────

class ScheduledItem(BaseModel):
    """
    A job descriptor parked in the delayed store until ``due_at``.

    The stored payload is the resque-scheduler JSON shape
    ``{"queue": ..., "class": ..., "args": [args]}``: the arguments are
    wrapped in a one-element list, and unwrapped again on decode.
    """
    model_config = ConfigDict(frozen=True)

    queue: str
    job_type: str
    args: JobArgs = Field(default_factory=list)
    due_at: int

    @classmethod
    def at(cls, when: Timestamp, queue: str, job_type: str, args: JobArgs = None) -> ScheduledItem:
        return cls(queue=queue, job_type=job_type,
                   args=[] if args is None else args, due_at=due_unix(when))

    def to_payload(self) -> dict[str, Any]:
        return build_payload(self.queue, self.job_type, self.args)

    def encode(self) -> str:
        return json.dumps(self.to_payload(), separators=(",", ":"))

    @classmethod
    def decode(cls, raw: Union[str, bytes], due_at: int) -> ScheduledItem:
        data = json.loads(raw)
        wrapped = data.get("args") or []
        args = wrapped[0] if wrapped else []
        return cls(queue=data["queue"], job_type=data["class"], args=args, due_at=int(due_at))

    def notification(self) -> dict[str, Any]:
        """Payload handed to before-enqueue observers."""
        return {"queue": self.queue, "job_type": self.job_type, "args": self.args}
