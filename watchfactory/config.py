"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from watchfactory.models.config import LogConfig, MetricsConfig, WatchConfig, WatchFactoryConfig
from watchfactory.models.resources import ALL_KINDS, ResourceKind

_WINDOW_SECONDS = {"m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"WATCHFACTORY_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_time_window(value: str) -> str:
    if not re.match(r"^[0-9]+(m|h|d)$", value):
        raise ValueError(f"Invalid time window format: {value}")
    return value


def _window_seconds(value: str) -> int:
    """Convert a validated ``<N>m|h|d`` window into seconds."""
    return int(value[:-1]) * _WINDOW_SECONDS[value[-1]]


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _parse_kinds(value: str) -> tuple[ResourceKind, ...]:
    """Parse a comma separated kind list; empty means every kind."""
    names = [part.strip().lower() for part in value.split(",") if part.strip()]
    if not names:
        return ALL_KINDS
    kinds: list[ResourceKind] = []
    for name in names:
        try:
            kind = ResourceKind(name)
        except ValueError:
            raise ValueError(f"Invalid resource kind: {name}. Must be one of {[k.value for k in ResourceKind]}") from None
        if kind not in kinds:
            kinds.append(kind)
    return tuple(kinds)


def load_config() -> WatchFactoryConfig:
    """Load configuration from WATCHFACTORY_* environment variables."""
    return WatchFactoryConfig(
        watch=WatchConfig(
            resync_period_seconds=_window_seconds(_validate_time_window(_env("RESYNC_PERIOD", "12h"))),
            num_event_queues=_env_int("NUM_EVENT_QUEUES", 10, min_val=1, max_val=64),
            event_queue_size=_env_int("EVENT_QUEUE_SIZE", 1, min_val=1, max_val=1024),
            initial_sync_timeout=_env_float("INITIAL_SYNC_TIMEOUT", 300.0, min_val=0.0),
            relist_delay=_env_float("RELIST_DELAY", 5.0, min_val=0.0),
            watch_timeout_seconds=_env_int("WATCH_TIMEOUT", 300, min_val=30, max_val=3600),
            shutdown_grace_seconds=_env_float("SHUTDOWN_GRACE", 15.0, min_val=0.0),
            kinds=_parse_kinds(_env("KINDS", "")),
        ),
        metrics=MetricsConfig(
            port=_env_int("METRICS_PORT", 0, min_val=0, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            log_events=_env_bool("LOG_EVENTS", False),
        ),
    )
