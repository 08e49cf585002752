"""Per-kind resource watcher.

A ResourceWatcher owns the mirror (Informer) of one resource kind, the
registry of handlers subscribed to it and, for ordered kinds, the event
queue shards.  It is the Informer's only EventSink:

* direct kinds fan out inline, with the registry lock held for the whole
  delivery, so registration and removal wait for in-flight events;
* ordered kinds hash the object into a shard and await a slot there; the
  shard worker fans out without holding the registry lock.

Handler removal never touches the registry lock synchronously: the handler
is tombstoned immediately and a compaction task deletes it from the
registry later, which keeps removal safe from inside a running callback.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from watchfactory.cache.informer import Informer
from watchfactory.cache.transport import ListWatch
from watchfactory.factory.errors import AlreadyDead, MetaError, SyncFailed, UnknownHandler
from watchfactory.factory.handler import Handler, ResourceEventHandler, deliver
from watchfactory.factory.meta import ensure_object_on_delete, object_meta
from watchfactory.factory.queue import EventQueue, queue_index
from watchfactory.factory.selector import selector_predicate
from watchfactory.models.config import WatchConfig
from watchfactory.models.resources import DeliveryMode, Event, EventType, ResourceKind, WatcherState
from watchfactory.observability.metrics import events_dropped_total, events_total, handlers

_log = structlog.get_logger(component="factory.watcher")

ProcessExisting = Callable[[list[Any]], Awaitable[None] | None]


class ResourceWatcher:
    """Mirror, handler registry and (for ordered kinds) shards of one kind."""

    def __init__(
        self,
        kind: ResourceKind,
        list_watch: ListWatch,
        config: WatchConfig | None = None,
        stop: asyncio.Event | None = None,
    ) -> None:
        self.kind = kind
        self._config = config or WatchConfig()
        self._stop = stop or asyncio.Event()
        self._log = _log.bind(kind=kind.value)

        self._lock = asyncio.Lock()
        self._handlers: dict[int, Handler] = {}
        self._compactions: set[asyncio.Task[None]] = set()
        # Ids of handlers whose removal was requested, kept after compaction.
        self._retired: set[int] = set()
        self._state = WatcherState.UNINITIALIZED

        self._queues: list[EventQueue] = []
        if kind.delivery_mode is DeliveryMode.ORDERED:
            self._queues = [
                EventQueue(kind, idx, maxsize=self._config.event_queue_size)
                for idx in range(self._config.num_event_queues)
            ]

        self.informer = Informer(
            kind,
            list_watch,
            sink=self,
            resync_period=self._config.resync_period_seconds,
            relist_delay=self._config.relist_delay,
        )

    def __repr__(self) -> str:
        return f"ResourceWatcher(kind={self.kind.value}, state={self._state.value}, handlers={len(self._handlers)})"

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    @property
    def ordered(self) -> bool:
        return bool(self._queues)

    def has_handler(self, handler_id: int) -> bool:
        return handler_id in self._handlers

    def list(self) -> list[Any]:
        """Snapshot of every object currently mirrored."""
        return self.informer.store.list()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the shard workers and the mirror."""
        if self._state is not WatcherState.UNINITIALIZED:
            return
        for queue in self._queues:
            queue.start(self._snapshot_handlers, self._stop)
        self.informer.start()
        self._state = WatcherState.SYNCING
        self._log.debug("watcher_started", ordered=self.ordered)

    async def await_initial_sync(self, timeout: float | None = None) -> None:
        """Wait until the mirror's initial listing is complete.

        Raises:
            SyncFailed: the transport failed, the stop signal fired, or
                *timeout* seconds elapsed first.
        """
        sync = asyncio.ensure_future(self.informer.wait_for_sync())
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait({sync, stop}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not sync.done():
                sync.cancel()
        if sync not in done:
            reason = "stopped before sync" if stop in done else f"timed out after {timeout}s"
            raise SyncFailed(self.kind.value, reason)
        exc = sync.exception()
        if exc is not None:
            raise SyncFailed(self.kind.value, str(exc)) from exc
        if self._state is WatcherState.SYNCING:
            self._state = WatcherState.READY

    async def shutdown(self) -> None:
        """Kill every handler, stop the mirror and close the shards."""
        if self._state in (WatcherState.SHUTTING_DOWN, WatcherState.STOPPED):
            return
        self._state = WatcherState.SHUTTING_DOWN
        self._log.debug("watcher_shutting_down", handlers=len(self._handlers))

        async with self._lock:
            live = [h for h in self._handlers.values() if h.alive]
        for handler in live:
            handler.kill()
            self._retired.add(handler.id)
            self._schedule_compaction(handler)

        await self.informer.stop()
        grace = self._config.shutdown_grace_seconds
        await asyncio.gather(*(queue.close(grace) for queue in self._queues))
        if self._compactions:
            await asyncio.gather(*self._compactions, return_exceptions=True)

        self._state = WatcherState.STOPPED
        self._log.info("watcher_stopped")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _build_filter(self, namespace: str, label_selector: Any) -> Callable[[Any], bool] | None:
        if not namespace and label_selector is None:
            return None
        labels_match = selector_predicate(label_selector) if label_selector is not None else None
        kind = self.kind
        log = self._log

        def _filter(obj: Any) -> bool:
            try:
                meta = object_meta(kind, obj)
            except MetaError as exc:
                log.error("handler_filter_error", error=str(exc))
                return False
            if namespace and meta.namespace != namespace:
                return False
            if labels_match is not None and not labels_match(meta.labels):
                return False
            return True

        return _filter

    async def add_handler(
        self,
        handler_id: int,
        funcs: ResourceEventHandler,
        namespace: str = "",
        label_selector: Any = None,
        process_existing: ProcessExisting | None = None,
    ) -> Handler:
        """Register a handler and replay the objects that already exist.

        ``process_existing`` receives the filtered snapshot before the
        handler joins the registry; the handler then gets a synthetic add
        for each snapshot object.  The registry lock is held throughout, so
        no live event reaches the handler before its synthetic adds.

        Raises:
            InvalidLabelSelector: *label_selector* is malformed.
        """
        filter_func = self._build_filter(namespace, label_selector)
        handler = Handler(handler_id, self.kind, funcs, filter_func)

        async with self._lock:
            if namespace:
                candidates = self.informer.store.by_namespace(namespace)
            else:
                candidates = self.informer.store.list()
            existing = [obj for obj in candidates if filter_func is None or filter_func(obj)]

            if process_existing is not None:
                result = process_existing(existing)
                if inspect.isawaitable(result):
                    await result

            self._handlers[handler_id] = handler
            handlers.labels(kind=self.kind.value).set(len(self._handlers))
            self._log.debug("handler_added", handler_id=handler_id, existing=len(existing))

            for obj in existing:
                await deliver(handler, Event(EventType.ADD, obj))

        return handler

    def remove_handler(self, handler_id: int) -> None:
        """Tombstone a handler and schedule its removal from the registry.

        Safe to call from inside a handler callback.

        Raises:
            UnknownHandler: no handler with this id is registered.
            AlreadyDead: removal was already requested, even if the
                handler has since left the registry.
        """
        if handler_id in self._retired:
            raise AlreadyDead(handler_id)
        handler = self._handlers.get(handler_id)
        if handler is None:
            raise UnknownHandler(self.kind.value, handler_id)
        handler.kill()
        self._retired.add(handler_id)
        self._log.debug("handler_removal_scheduled", handler_id=handler_id)
        self._schedule_compaction(handler)

    def _schedule_compaction(self, handler: Handler) -> None:
        task = asyncio.get_running_loop().create_task(
            self._compact(handler),
            name=f"compact-{self.kind.value}-{handler.id}",
        )
        self._compactions.add(task)
        task.add_done_callback(self._compactions.discard)

    async def _compact(self, handler: Handler) -> None:
        async with self._lock:
            if self._handlers.pop(handler.id, None) is None:
                self._log.warning("tried_to_remove_unknown_handler", handler_id=handler.id)
                return
            handlers.labels(kind=self.kind.value).set(len(self._handlers))
        self._log.debug("handler_removed", handler_id=handler.id)

    async def _snapshot_handlers(self) -> list[Handler]:
        async with self._lock:
            return list(self._handlers.values())

    # ------------------------------------------------------------------
    # EventSink (called by the informer)
    # ------------------------------------------------------------------

    async def on_add(self, obj: Any) -> None:
        await self._dispatch(Event(EventType.ADD, obj))

    async def on_update(self, old_obj: Any, new_obj: Any) -> None:
        await self._dispatch(Event(EventType.UPDATE, new_obj, old_obj))

    async def on_delete(self, obj: Any) -> None:
        try:
            real = ensure_object_on_delete(self.kind, obj)
        except MetaError as exc:
            self._drop(exc)
            return
        await self._dispatch(Event(EventType.DELETE, real))

    def _drop(self, exc: MetaError) -> None:
        events_dropped_total.labels(kind=self.kind.value, reason=type(exc).__name__).inc()
        self._log.error("event_dropped", error=str(exc))

    async def _dispatch(self, event: Event) -> None:
        events_total.labels(kind=self.kind.value, type=event.type.value).inc()
        if self._queues:
            await self._enqueue(event)
            return

        async with self._lock:
            try:
                object_meta(self.kind, event.obj)
            except MetaError as exc:
                self._drop(exc)
                return
            for handler in list(self._handlers.values()):
                await deliver(handler, event)

    async def _enqueue(self, event: Event) -> None:
        try:
            meta = object_meta(self.kind, event.obj)
        except MetaError as exc:
            self._drop(exc)
            return
        idx = queue_index(meta.namespace, meta.name, len(self._queues))
        await self._queues[idx].enqueue(event)
