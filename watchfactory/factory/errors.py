"""Exceptions raised by the watch factory."""

from __future__ import annotations


class WatchFactoryError(Exception):
    """Base class for every watch factory error."""


class MetaError(WatchFactoryError):
    """Object metadata could not be extracted; the event is dropped."""


class TypeMismatch(MetaError):
    """The object's runtime type disagrees with the watcher's kind."""

    def __init__(self, kind: str, obj: object) -> None:
        super().__init__(f"object type {type(obj).__name__} did not match expected {kind}")
        self.kind = kind
        self.obj_type = type(obj).__name__


class UnrecoverableTombstone(MetaError):
    """A delete placeholder did not wrap an object of the expected kind."""

    def __init__(self, kind: str, obj: object) -> None:
        super().__init__(f"couldn't get {kind} object from tombstone: {obj!r}")
        self.kind = kind


class AlreadyDead(WatchFactoryError):
    """Removal was requested for a handler that is already dead."""

    def __init__(self, handler_id: int) -> None:
        super().__init__(f"event handler {handler_id} already dead")
        self.handler_id = handler_id


class UnknownHandler(WatchFactoryError):
    """The handler id is not present in the watcher's registry."""

    def __init__(self, kind: str, handler_id: int) -> None:
        super().__init__(f"tried to remove unknown {kind} event handler {handler_id}")
        self.kind = kind
        self.handler_id = handler_id


class UnknownKind(WatchFactoryError):
    """The resource kind was never configured on this factory."""

    def __init__(self, kind: object) -> None:
        super().__init__(f"unknown object type {kind}")
        self.kind = kind


class InvalidLabelSelector(WatchFactoryError):
    """A label selector could not be turned into a match predicate."""


class SyncFailed(WatchFactoryError):
    """A mirror could not complete its initial listing."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"error in syncing cache for {kind} informer: {reason}")
        self.kind = kind
        self.reason = reason


class InitialSyncFailed(WatchFactoryError):
    """Factory initialization aborted because one kind failed to sync."""

    def __init__(self, kind: str, cause: Exception) -> None:
        super().__init__(f"initial sync failed for {kind}: {cause}")
        self.kind = kind
        self.cause = cause
