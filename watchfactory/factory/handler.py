"""Tombstoned subscriber handlers.

ResourceEventHandler -- the add/update/delete callback triple a subscriber
                        registers.  Callbacks may be plain functions or
                        coroutine functions.
Handler              -- wraps one subscriber's callbacks with a filter and a
                        two-state tombstone.  A dead handler never invokes a
                        callback again, even for events already in flight.
deliver              -- routes an Event to a handler, containing subscriber
                        exceptions so one failing subscriber cannot stop
                        delivery to the others.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

import structlog

from watchfactory.factory.errors import AlreadyDead
from watchfactory.models.resources import Event, EventType, ResourceKind
from watchfactory.observability.metrics import handler_errors_total

_log = structlog.get_logger(component="factory.handler")

Callback = Callable[..., Awaitable[None] | None]
FilterFunc = Callable[[Any], bool]


class Tombstone(IntEnum):
    ALIVE = 0
    DEAD = 1


@dataclass
class ResourceEventHandler:
    """Subscriber callbacks; any of them may be omitted."""

    on_add: Callback | None = None
    on_update: Callback | None = None
    on_delete: Callback | None = None


async def _invoke(fn: Callback | None, *args: Any) -> None:
    if fn is None:
        return
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


def _match_all(obj: Any) -> bool:
    return True


class Handler:
    """One registered subscriber.

    Filtering follows the Kubernetes filtering handler: an update whose old
    object matched but whose new object does not is delivered as a delete,
    and the reverse as an add.
    """

    def __init__(
        self,
        handler_id: int,
        kind: ResourceKind,
        funcs: ResourceEventHandler,
        filter_func: FilterFunc | None = None,
    ) -> None:
        self.id = handler_id
        self.kind = kind
        self._funcs = funcs
        self._filter = filter_func or _match_all
        self._tombstone = Tombstone.ALIVE

    def __repr__(self) -> str:
        return f"Handler(id={self.id}, kind={self.kind.value}, alive={self.alive})"

    @property
    def alive(self) -> bool:
        return self._tombstone is Tombstone.ALIVE

    def kill(self) -> None:
        """Transition alive -> dead.

        Raises:
            AlreadyDead: removal was already requested.
        """
        if self._tombstone is Tombstone.DEAD:
            raise AlreadyDead(self.id)
        self._tombstone = Tombstone.DEAD

    async def on_add(self, obj: Any) -> None:
        if not self.alive or not self._filter(obj):
            return
        await _invoke(self._funcs.on_add, obj)

    async def on_update(self, old_obj: Any, new_obj: Any) -> None:
        if not self.alive:
            return
        newer = self._filter(new_obj)
        older = self._filter(old_obj)
        if newer and older:
            await _invoke(self._funcs.on_update, old_obj, new_obj)
        elif older:
            await _invoke(self._funcs.on_delete, old_obj)
        elif newer:
            await _invoke(self._funcs.on_add, new_obj)

    async def on_delete(self, obj: Any) -> None:
        if not self.alive or not self._filter(obj):
            return
        await _invoke(self._funcs.on_delete, obj)


async def deliver(handler: Handler, event: Event) -> None:
    """Deliver *event* to *handler*, logging instead of raising on failure."""
    try:
        if event.type is EventType.ADD:
            await handler.on_add(event.obj)
        elif event.type is EventType.UPDATE:
            await handler.on_update(event.old_obj, event.obj)
        else:
            await handler.on_delete(event.obj)
    except Exception as exc:
        handler_errors_total.labels(kind=handler.kind.value).inc()
        _log.error(
            "handler_callback_failed",
            kind=handler.kind.value,
            handler_id=handler.id,
            event_type=event.type.value,
            error=str(exc),
            exc_info=True,
        )
