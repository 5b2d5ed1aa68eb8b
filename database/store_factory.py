"""
Store Factory — Create the right delayed store backend from configuration.

Configuration in settings.yaml:
    store:
      # Delayed store backend
      #   "redis"   — shared sorted set; use this whenever more than one
      #               scheduler process runs
      #   "memory"  — in-process (development, testing)
      backend: "memory"
      redis_url: "redis://localhost:6379"
      namespace: "resque:"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict or StoreConfig
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from dataclasses import asdict, is_dataclass
from typing import Optional

from database.store_base import BaseDelayedStore

logger = structlog.get_logger()

_instance: Optional[BaseDelayedStore] = None


def create_store(config=None) -> BaseDelayedStore:
    """
    Factory: create the appropriate delayed store backend.

    Args:
        config: StoreConfig or dict with keys:
            backend: "redis" | "memory"  (default: "memory")
            redis_url: str (for redis backend)
            namespace: str (key prefix, default: "resque:")
            socket_timeout: float (seconds, redis only)
    """
    global _instance
    if _instance is not None:
        return _instance

    if is_dataclass(config):
        config = asdict(config)
    config = config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        from database.store_redis import RedisDelayedStore
        _instance = RedisDelayedStore(
            redis_url=config.get("redis_url", "redis://localhost:6379"),
            namespace=config.get("namespace", "resque:"),
            socket_timeout=config.get("socket_timeout", 5.0),
        )
        logger.info("store_created", backend="redis")

    else:  # "memory" or default
        from database.store_memory import InMemoryDelayedStore
        _instance = InMemoryDelayedStore()
        logger.info("store_created", backend="memory")

    return _instance


def get_store() -> BaseDelayedStore:
    """Return the singleton store instance, creating a memory store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
