"""Core data structures for watchfactory."""

from watchfactory.models.config import LogConfig, MetricsConfig, WatchConfig, WatchFactoryConfig
from watchfactory.models.resources import (
    ALL_KINDS,
    DeletedFinalStateUnknown,
    DeliveryMode,
    Event,
    EventType,
    ObjectMeta,
    ResourceKind,
    WatcherState,
)

__all__ = [
    "ALL_KINDS",
    "DeletedFinalStateUnknown",
    "DeliveryMode",
    "Event",
    "EventType",
    "LogConfig",
    "MetricsConfig",
    "ObjectMeta",
    "ResourceKind",
    "WatchConfig",
    "WatchFactoryConfig",
    "WatcherState",
]
