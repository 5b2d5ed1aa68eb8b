"""
Structured logging setup for the scheduler process.

Verbosity:
  off      nothing is written
  normal   INFO and up:   *** delayed_item_queued queue='emails' job_type='Welcome'
  verbose  DEBUG and up:  ** [14:02:11 2024-05-01] delayed_item_queued queue='emails' ...
"""
from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

from config.settings import LOG_LEVELS

_MIN_LEVEL = {
    "off": logging.CRITICAL,
    "normal": logging.INFO,
    "verbose": logging.DEBUG,
}


def _drop_everything(logger, method_name, event_dict):
    raise structlog.DropEvent


class LineRenderer:
    """Render one event per line with the worker's classic prefixes."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._kv = structlog.processors.KeyValueRenderer(sort_keys=True)

    def __call__(self, logger, method_name: str, event_dict: dict[str, Any]) -> str:
        event = event_dict.pop("event", "")
        timestamp = event_dict.pop("timestamp", "")
        event_dict.pop("level", None)
        extra = self._kv(logger, method_name, event_dict) if event_dict else ""
        line = f"{event} {extra}".rstrip()
        if self.verbose:
            return f"** [{timestamp}] {line}"
        return f"*** {line}"


def configure_logging(log_level: str = "normal", stream: TextIO = None) -> None:
    """Configure structlog for the given verbosity (off / normal / verbose)."""
    if log_level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {log_level!r}")

    if log_level == "off":
        processors = [_drop_everything]
    else:
        verbose = log_level == "verbose"
        processors = [structlog.processors.add_log_level]
        if verbose:
            processors.append(structlog.processors.TimeStamper(fmt="%H:%M:%S %Y-%m-%d"))
        processors += [
            structlog.processors.format_exc_info,
            LineRenderer(verbose=verbose),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_MIN_LEVEL[log_level]),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=False,
    )
