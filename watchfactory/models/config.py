"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

from watchfactory.models.resources import ALL_KINDS, ResourceKind


@dataclass
class WatchConfig:
    """Mirror and event queue configuration."""

    # 12 hours: none of the consumers has an update-loss race that needs a
    # tighter resync, and a short period just spins over every object.
    resync_period_seconds: int = 12 * 60 * 60
    num_event_queues: int = 10
    event_queue_size: int = 1
    initial_sync_timeout: float = 300.0
    relist_delay: float = 5.0
    watch_timeout_seconds: int = 300
    shutdown_grace_seconds: float = 15.0
    kinds: tuple[ResourceKind, ...] = ALL_KINDS


@dataclass
class MetricsConfig:
    """Prometheus exposition configuration."""

    port: int = 0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    log_events: bool = False


@dataclass
class WatchFactoryConfig:
    """Top-level watchfactory configuration."""

    watch: WatchConfig = field(default_factory=WatchConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
