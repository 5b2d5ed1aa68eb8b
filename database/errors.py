"""
Error taxonomy for the delayed scheduler.

An empty pop or an empty schedule is *not* an error: store calls return
None for that, and the worker treats it as the end of a drain.
"""
from __future__ import annotations

from typing import Any, Callable, Optional


class SchedulerError(Exception):
    """Base class for every error raised by the scheduler core."""
    pass


class StoreUnavailable(SchedulerError):
    """The backing store could not be reached or returned a transport error."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InvalidJob(SchedulerError):
    """A job was scheduled without a queue or a job type."""
    pass


class DispatchFailure(SchedulerError):
    """Submission to the dispatch queue failed after the item left the delayed store."""

    def __init__(self, queue: str, job_type: str, args: Any, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to enqueue {job_type} in {queue}: {cause}")
        self.queue = queue
        self.job_type = job_type
        self.job_args = args
        self.cause = cause


class NotificationFailure(SchedulerError):
    """An observer raised while handling an event."""

    def __init__(self, event: str, callback: Callable, cause: BaseException):
        name = getattr(callback, "__qualname__", repr(callback))
        super().__init__(f"Listener {name} for {event} failed: {cause}")
        self.event = event
        self.callback = callback
        self.cause = cause
