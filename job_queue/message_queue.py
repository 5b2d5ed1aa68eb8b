"""
Dispatch Queue — Immediate-execution queues that ordinary workers consume.

The scheduler only needs one operation from this layer:
    submit(queue, job_type, args)

Queue Topology (Redis, resque compatible):
  <ns>queues          set of known queue names
  <ns>queue:<name>    list of job payloads, workers pop from the left

Message Schema:
  {
      "class":       job type the worker should run,
      "args":        [arguments as scheduled: list, or keyed hash],
      "id":          unique job identifier,
      "queue_time":  UNIX time the job was pushed,
  }
"""
from __future__ import annotations

import json
import time
import uuid
import structlog
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import asdict, is_dataclass
from typing import Any, Optional

from redis.exceptions import RedisError

from database.errors import DispatchFailure

logger = structlog.get_logger()


def build_job_payload(job_type: str, args: Any) -> dict[str, Any]:
    return {
        "class": job_type,
        "args": [[] if args is None else args],
        "id": uuid.uuid4().hex,
        "queue_time": time.time(),
    }


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class DispatchQueue(ABC):
    """Abstract immediate-dispatch queue."""

    async def connect(self):
        """Establish connection to the queue backend."""
        return None

    async def close(self):
        """Gracefully shut down."""
        return None

    @abstractmethod
    async def submit(self, queue: str, job_type: str, args: Any) -> str:
        """
        Push a job onto a named queue so workers can pick it up.
        Returns the job id. Raises DispatchFailure if the push did not happen.
        """
        ...

    @abstractmethod
    async def queue_length(self, queue: str) -> int:
        """Return the number of pending jobs in a queue."""
        ...


# ──────────────────────────────────────────────────────────────
#  Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisDispatchQueue(DispatchQueue):
    """Production queue: resque-format JSON payloads on Redis lists."""

    def __init__(self, redis_url: str = "redis://localhost:6379", namespace: str = "resque:",
                 client=None):
        self._redis_url = redis_url
        self._namespace = namespace
        self._redis = client

    async def connect(self):
        if self._redis is not None:
            return
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        logger.info("redis_dispatch_queue_connected", url=self._redis_url)

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def queue_key(self, queue: str) -> str:
        return f"{self._namespace}queue:{queue}"

    async def submit(self, queue: str, job_type: str, args: Any) -> str:
        await self.connect()
        payload = build_job_payload(job_type, args)
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.sadd(f"{self._namespace}queues", queue)
            pipe.rpush(self.queue_key(queue), json.dumps(payload))
            await pipe.execute()
        except RedisError as e:
            raise DispatchFailure(queue, job_type, args, cause=e) from e
        logger.debug("job_submitted", queue=queue, job_type=job_type, job_id=payload["id"])
        return payload["id"]

    async def queue_length(self, queue: str) -> int:
        await self.connect()
        return await self._redis.llen(self.queue_key(queue))

    async def jobs(self, queue: str) -> list[dict[str, Any]]:
        """Decoded payloads currently waiting on a queue (oldest first)."""
        await self.connect()
        return [json.loads(raw) for raw in await self._redis.lrange(self.queue_key(queue), 0, -1)]


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryDispatchQueue(DispatchQueue):
    """
    Development/test queue. Records every submission per queue name;
    nothing consumes them.
    """

    def __init__(self):
        self._queues: dict[str, list[dict[str, Any]]] = defaultdict(list)

    async def submit(self, queue: str, job_type: str, args: Any) -> str:
        payload = build_job_payload(job_type, args)
        self._queues[queue].append(payload)
        logger.debug("job_submitted", queue=queue, job_type=job_type, job_id=payload["id"])
        return payload["id"]

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, ()))

    def jobs(self, queue: str) -> list[dict[str, Any]]:
        return list(self._queues.get(queue, ()))

    def queues(self) -> list[str]:
        return sorted(q for q, jobs in self._queues.items() if jobs)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[DispatchQueue] = None


def create_dispatch_queue(queue_config=None) -> DispatchQueue:
    """Factory: create the appropriate queue backend."""
    global _instance
    if _instance:
        return _instance

    if is_dataclass(queue_config):
        queue_config = asdict(queue_config)
    config = queue_config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        _instance = RedisDispatchQueue(
            redis_url=config.get("redis_url", "redis://localhost:6379"),
            namespace=config.get("namespace", "resque:"),
        )
    else:
        _instance = InMemoryDispatchQueue()

    return _instance


def get_dispatch_queue() -> DispatchQueue:
    """Return the singleton queue instance."""
    global _instance
    if _instance is None:
        _instance = create_dispatch_queue()
    return _instance


def reset_dispatch_queue() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
