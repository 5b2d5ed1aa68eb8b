"""
Database layer — Delayed schedule persistence.

Backends:
  - Redis (sorted set index + per-timestamp lists, shared across processes)
  - In-memory (sorted list + deques, for development/testing)

Quick start:
  from database import create_store
  store = create_store({"backend": "memory"})
  await store.enqueue_in(60, "emails", "Welcome", ["u1"])
"""
from database.errors import (
    SchedulerError, StoreUnavailable, InvalidJob,
    DispatchFailure, NotificationFailure,
)
from database.store_base import BaseDelayedStore, validate_job
from database.store_memory import InMemoryDelayedStore
from database.store_redis import RedisDelayedStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # Errors
    "SchedulerError", "StoreUnavailable", "InvalidJob",
    "DispatchFailure", "NotificationFailure",
    # Store interface
    "BaseDelayedStore", "validate_job",
    # Store backends
    "InMemoryDelayedStore", "RedisDelayedStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
