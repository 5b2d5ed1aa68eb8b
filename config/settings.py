"""
Configuration loader for the delayed job scheduler.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

LOG_LEVELS = ("off", "normal", "verbose")


@dataclass
class SchedulerConfig:
    poll_interval: float = 5.0          # seconds between delayed-queue scans
    log_level: str = "normal"           # "off" | "normal" | "verbose"
    update_proctitle: bool = True

    def __post_init__(self):
        if self.poll_interval is None or float(self.poll_interval) <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval!r}")
        self.poll_interval = float(self.poll_interval)
        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )


@dataclass
class StoreConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    namespace: str = "resque:"
    socket_timeout: Optional[float] = 5.0


@dataclass
class QueueConfig:
    backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    namespace: str = "resque:"


@dataclass
class Settings:
    app_name: str = "DelayedScheduler"
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _apply_env_overrides(raw_scheduler: dict[str, Any]) -> dict[str, Any]:
    """
    Honour the classic resque-scheduler environment switches:
    INTERVAL=<seconds>, LOGGING / VERBOSE for normal output, VVERBOSE for verbose.
    """
    sched = dict(raw_scheduler)
    if sched.get("log_level") is False:     # bare `off` in YAML parses as a boolean
        sched["log_level"] = "off"
    if os.environ.get("INTERVAL"):
        sched["poll_interval"] = float(os.environ["INTERVAL"])
    if os.environ.get("VVERBOSE"):
        sched["log_level"] = "verbose"
    elif os.environ.get("LOGGING") or os.environ.get("VERBOSE"):
        sched["log_level"] = "normal"
    return sched


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "SCHEDULER_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    raw: dict[str, Any] = {}
    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

    settings = Settings()
    settings.app_name = raw.get("app_name", settings.app_name)

    sched = _apply_env_overrides(raw.get("scheduler") or {})
    settings.scheduler = SchedulerConfig(
        poll_interval=sched.get("poll_interval", 5.0),
        log_level=sched.get("log_level", "normal"),
        update_proctitle=sched.get("update_proctitle", True),
    )

    if "store" in raw:
        st = raw["store"]
        settings.store = StoreConfig(
            backend=st.get("backend", "memory"),
            redis_url=st.get("redis_url", "redis://localhost:6379"),
            namespace=st.get("namespace", "resque:"),
            socket_timeout=st.get("socket_timeout", 5.0),
        )

    if "queue" in raw:
        q = raw["queue"]
        settings.queue = QueueConfig(
            backend=q.get("backend", "memory"),
            redis_url=q.get("redis_url", "redis://localhost:6379"),
            namespace=q.get("namespace", "resque:"),
        )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
