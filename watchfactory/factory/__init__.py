"""Watch factory core.

Submodules:
    errors   -- Exception hierarchy rooted at WatchFactoryError.
    meta     -- Resource metadata accessor and delete-placeholder unwrapping.
    selector -- Label selector evaluation.
    handler  -- Tombstoned subscriber handlers.
    queue    -- Hashed event queue shards for ordered kinds.
    watcher  -- Per-kind mirror, registry and fan-out.
    factory  -- WatchFactory: startup, typed registration, shutdown.
"""

from watchfactory.factory.errors import (
    AlreadyDead,
    InitialSyncFailed,
    InvalidLabelSelector,
    MetaError,
    SyncFailed,
    TypeMismatch,
    UnknownHandler,
    UnknownKind,
    UnrecoverableTombstone,
    WatchFactoryError,
)
from watchfactory.factory.factory import WatchFactory
from watchfactory.factory.handler import Handler, ResourceEventHandler
from watchfactory.factory.watcher import ResourceWatcher

__all__ = [
    "AlreadyDead",
    "Handler",
    "InitialSyncFailed",
    "InvalidLabelSelector",
    "MetaError",
    "ResourceEventHandler",
    "ResourceWatcher",
    "SyncFailed",
    "TypeMismatch",
    "UnknownHandler",
    "UnknownKind",
    "UnrecoverableTombstone",
    "WatchFactory",
    "WatchFactoryError",
]
