#!/usr/bin/env python3
"""
Delayed Scheduler — Start a scheduler process.

Usage:
    # Poll every 5 seconds using config/settings.yaml:
    python scripts/run_scheduler.py

    # Custom config, 1 second interval, verbose output:
    python scripts/run_scheduler.py --config /etc/scheduler.yaml --interval 1 --log-level verbose

    # Drain whatever is due right now and exit:
    python scripts/run_scheduler.py --once
"""
import asyncio
import os
import signal
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from config.settings import LOG_LEVELS, SchedulerConfig, load_settings
from core.events import EventRegistry
from core.scheduler import DelayedScheduler
from database.store_factory import create_store
from job_queue.message_queue import create_dispatch_queue
from utils.logging import configure_logging

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Move due delayed jobs onto their queues")
    parser.add_argument("--config", help="Path to settings YAML (default: $SCHEDULER_CONFIG)")
    parser.add_argument("--interval", type=float, help="Seconds to sleep between polls")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Output verbosity")
    parser.add_argument("--once", action="store_true", help="Run a single drain and exit")
    return parser


def build_scheduler(settings, events: EventRegistry = None) -> DelayedScheduler:
    store = create_store(settings.store)
    queue = create_dispatch_queue(settings.queue)
    return DelayedScheduler(store, queue, settings.scheduler, events or EventRegistry())


async def run_scheduler(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    if args.interval is not None or args.log_level is not None:
        settings.scheduler = SchedulerConfig(
            poll_interval=args.interval if args.interval is not None else settings.scheduler.poll_interval,
            log_level=args.log_level or settings.scheduler.log_level,
            update_proctitle=settings.scheduler.update_proctitle,
        )
    configure_logging(settings.scheduler.log_level)

    scheduler = build_scheduler(settings)
    try:
        if args.once:
            count = await scheduler.run_once()
            logger.info("delayed_scheduler_single_run", dispatched=count)
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await scheduler.run(stop)
    finally:
        await scheduler.store.close()
        await scheduler.queue.close()
    return 0


def main():
    args = build_parser().parse_args()
    sys.exit(asyncio.run(run_scheduler(args)))


if __name__ == "__main__":
    main()
