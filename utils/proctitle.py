"""Process title reporting, so `ps` shows what a scheduler is doing."""
from __future__ import annotations

import setproctitle

PROC_PREFIX = "resque-scheduler"


def format_proc_line(status: str, version: str) -> str:
    return f"{PROC_PREFIX}-{version}: {status}"


def update_proc_line(status: str, version: str) -> str:
    title = format_proc_line(status, version)
    setproctitle.setproctitle(title)
    return title
