"""
Event Registry — Synchronous observer hooks owned by the host.

The scheduler fires BEFORE_DELAYED_ENQUEUE for every due job, right before
it is submitted to the dispatch queue, with the payload:
    {"queue": ..., "job_type": ..., "args": [...]}

Listeners run in registration order. A listener that raises is logged and
skipped; the remaining listeners still run and the job is still submitted.
"""
from __future__ import annotations

import inspect
import structlog
from collections import defaultdict
from typing import Any, Callable, Optional

from database.errors import NotificationFailure

logger = structlog.get_logger()

BEFORE_DELAYED_ENQUEUE = "beforeDelayedEnqueue"


class EventRegistry:
    """Explicit list of callbacks per event name. Callbacks may be sync or async."""

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = defaultdict(list)

    def listen(self, event: str, callback: Callable) -> None:
        self._listeners[event].append(callback)
        logger.debug("event_listener_registered", event_name=event,
                     listener=getattr(callback, "__qualname__", repr(callback)))

    def stop_listening(self, event: str, callback: Callable) -> bool:
        """Remove one registration of callback. Returns False if it was not registered."""
        listeners = self._listeners.get(event)
        if not listeners or callback not in listeners:
            return False
        listeners.remove(callback)
        return True

    def listeners(self, event: str) -> list[Callable]:
        return list(self._listeners.get(event, ()))

    def clear(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    async def trigger(self, event: str, payload: dict[str, Any]) -> list[NotificationFailure]:
        """Invoke every listener for event; return the failures that were logged."""
        failures: list[NotificationFailure] = []
        for callback in self.listeners(event):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                failure = NotificationFailure(event, callback, e)
                logger.error("event_listener_failed",
                             event_name=event,
                             error=str(failure),
                             exc_info=True)
                failures.append(failure)
        return failures
