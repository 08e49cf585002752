"""Informer: the periodically resynced mirror of one resource kind.

The informer lists every object of its kind, then follows a watch from the
list's resource version, keeping a Store current and notifying a single
EventSink of each change.  Notifications are strictly sequential: the next
change is not applied until the sink has returned from the previous one.

Recovery is limited to what a list/watch reflector does on its own:

* a watch that ends normally is re-opened from the last resource version;
* a ``410 Gone`` watch triggers an immediate re-list;
* any other transport error re-lists after ``relist_delay`` seconds.

A re-list diffs against the store: objects still present are delivered as
updates, new ones as adds, and vanished ones as deletes wrapped in
DeletedFinalStateUnknown.  An error during the *initial* list is not
retried; it is reported through ``wait_for_sync``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog

from watchfactory.cache.store import Store, meta_namespace_key
from watchfactory.cache.transport import ListWatch, ResourceExpired
from watchfactory.models.resources import DeletedFinalStateUnknown, ResourceKind
from watchfactory.observability.metrics import events_dropped_total

_log = structlog.get_logger(component="cache.informer")


class EventSink(Protocol):
    async def on_add(self, obj: Any) -> None: ...

    async def on_update(self, old_obj: Any, new_obj: Any) -> None: ...

    async def on_delete(self, obj: Any) -> None: ...


class Informer:
    """List/watch reflector plus store for one resource kind."""

    def __init__(
        self,
        kind: ResourceKind,
        list_watch: ListWatch,
        sink: EventSink,
        resync_period: float = 12 * 60 * 60,
        relist_delay: float = 5.0,
    ) -> None:
        self.kind = kind
        self.store = Store()
        self._list_watch = list_watch
        self._sink = sink
        self._resync_period = resync_period
        self._relist_delay = relist_delay

        # Serialises watch processing and resync so the sink sees one
        # change at a time.
        self._process_lock = asyncio.Lock()
        self._synced = asyncio.Event()
        self._failed = asyncio.Event()
        self._failure: BaseException | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._resource_version = ""

    @property
    def has_synced(self) -> bool:
        return self._synced.is_set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Start the reflector (and resync) tasks."""
        if self._tasks:
            return
        self._tasks.append(asyncio.create_task(self._run(), name=f"informer-{self.kind.value}"))
        if self._resync_period > 0:
            self._tasks.append(asyncio.create_task(self._resync_loop(), name=f"resync-{self.kind.value}"))

    async def stop(self) -> None:
        """Cancel the informer's tasks and wait for them to finish."""
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def wait_for_sync(self) -> None:
        """Block until the initial list has been applied.

        Raises:
            Exception: whatever the transport raised during the initial list.
        """
        synced = asyncio.ensure_future(self._synced.wait())
        failed = asyncio.ensure_future(self._failed.wait())
        try:
            await asyncio.wait({synced, failed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            synced.cancel()
            failed.cancel()
        if not self._synced.is_set() and self._failure is not None:
            raise self._failure

    # ------------------------------------------------------------------
    # Reflector
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        log = _log.bind(kind=self.kind.value)
        while True:
            try:
                await self._list_and_replace()
                if not self._synced.is_set():
                    self._synced.set()
                    log.info("informer_synced", objects=len(self.store), resource_version=self._resource_version)
                await self._watch()
            except asyncio.CancelledError:
                raise
            except ResourceExpired as exc:
                log.info("watch_expired_relisting", reason=str(exc))
            except Exception as exc:
                if not self._synced.is_set():
                    log.error("initial_list_failed", error=str(exc))
                    self._failure = exc
                    self._failed.set()
                    return
                log.warning("watch_failed_relisting", error=str(exc), delay=self._relist_delay)
                await asyncio.sleep(self._relist_delay)

    async def _list_and_replace(self) -> None:
        items, resource_version = await self._list_watch.list()
        async with self._process_lock:
            listed: set[str] = set()
            for obj in items:
                key = self._key(obj)
                if key is None:
                    continue
                listed.add(key)
                old = self.store.add(obj)
                if old is None:
                    await self._sink.on_add(obj)
                else:
                    await self._sink.on_update(old, obj)
            for key in self.store.list_keys():
                if key in listed:
                    continue
                last = self.store.delete_key(key)
                await self._sink.on_delete(DeletedFinalStateUnknown(key=key, obj=last))
            self._resource_version = resource_version

    async def _watch(self) -> None:
        while True:
            async for event_type, obj in self._list_watch.watch(self._resource_version):
                async with self._process_lock:
                    await self._apply(event_type, obj)
                metadata = getattr(obj, "metadata", None)
                if metadata is not None and metadata.resource_version:
                    self._resource_version = metadata.resource_version
            _log.debug("watch_closed_rewatching", kind=self.kind.value, resource_version=self._resource_version)

    def _key(self, obj: Any) -> str | None:
        """Return the store key of *obj*, or None after logging it as malformed."""
        try:
            return meta_namespace_key(obj)
        except ValueError as exc:
            events_dropped_total.labels(kind=self.kind.value, reason="malformed_object").inc()
            _log.error("malformed_object_skipped", kind=self.kind.value, error=str(exc))
            return None

    async def _apply(self, event_type: str, obj: Any) -> None:
        if event_type == "BOOKMARK":
            return
        if event_type in ("ADDED", "MODIFIED", "DELETED") and self._key(obj) is None:
            return
        if event_type == "ADDED":
            old = self.store.add(obj)
            if old is None:
                await self._sink.on_add(obj)
            else:
                await self._sink.on_update(old, obj)
        elif event_type == "MODIFIED":
            old = self.store.update(obj)
            if old is None:
                await self._sink.on_add(obj)
            else:
                await self._sink.on_update(old, obj)
        elif event_type == "DELETED":
            self.store.delete(obj)
            await self._sink.on_delete(obj)
        else:
            _log.warning("unknown_watch_event_type", kind=self.kind.value, event_type=event_type)

    # ------------------------------------------------------------------
    # Resync
    # ------------------------------------------------------------------

    async def _resync_loop(self) -> None:
        await self._synced.wait()
        while True:
            await asyncio.sleep(self._resync_period)
            await self.resync()

    async def resync(self) -> None:
        """Re-deliver an add for every mirrored object."""
        async with self._process_lock:
            objects = self.store.list()
            _log.debug("informer_resync", kind=self.kind.value, objects=len(objects))
            for obj in objects:
                await self._sink.on_add(obj)
