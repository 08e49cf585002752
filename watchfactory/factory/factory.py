"""Watch factory: one shared watcher per resource kind.

The factory starts a ResourceWatcher for every configured kind, blocks until
each mirror has completed its initial listing, and then lets any number of
subscribers register and remove handlers against those shared mirrors.
Handler ids come from a counter owned by the factory instance and are never
reused.

Initialization is all-or-nothing: if any kind fails to sync, every watcher
is shut down and InitialSyncFailed names the offending kind.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import structlog

from watchfactory.cache.transport import Transport
from watchfactory.factory.errors import AlreadyDead, InitialSyncFailed, SyncFailed, UnknownKind
from watchfactory.factory.handler import Handler, ResourceEventHandler
from watchfactory.factory.watcher import ProcessExisting, ResourceWatcher
from watchfactory.models.config import WatchConfig
from watchfactory.models.resources import ResourceKind

_log = structlog.get_logger(component="factory")


class WatchFactory:
    """Owns one ResourceWatcher per watched kind.

    Usage::

        factory = WatchFactory(config.watch)
        await factory.initialize(KubeTransport(), stop_event)
        handler = await factory.add_pod_handler(ResourceEventHandler(on_add=...))
        factory.remove_pod_handler(handler)
    """

    def __init__(self, config: WatchConfig | None = None) -> None:
        self._config = config or WatchConfig()
        self._handler_ids = itertools.count(1)
        self._watchers: dict[ResourceKind, ResourceWatcher] = {}
        self._stop: asyncio.Event | None = None
        self._stop_task: asyncio.Task[None] | None = None
        self._shutdown_done = False

    @property
    def kinds(self) -> tuple[ResourceKind, ...]:
        return tuple(self._watchers)

    def watcher(self, kind: ResourceKind) -> ResourceWatcher:
        """Return the watcher of *kind*.

        Raises:
            UnknownKind: *kind* is not watched by this factory.
        """
        try:
            return self._watchers[kind]
        except (KeyError, TypeError):
            raise UnknownKind(kind) from None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, transport: Transport, stop: asyncio.Event) -> None:
        """Start every watcher and wait for all initial syncs.

        On success a background task shuts the factory down once *stop* is
        set.

        Raises:
            InitialSyncFailed: a kind failed to sync; every watcher is
                stopped and dropped, so later calls raise UnknownKind.
        """
        self._stop = stop
        for kind in self._config.kinds:
            self._watchers[kind] = ResourceWatcher(kind, transport.list_watch(kind), self._config, stop)

        for watcher in self._watchers.values():
            watcher.start()

        timeout = self._config.initial_sync_timeout or None
        for kind, watcher in self._watchers.items():
            try:
                await watcher.await_initial_sync(timeout=timeout)
            except SyncFailed as exc:
                _log.error("initial_sync_failed", kind=kind.value, error=str(exc))
                await self.shutdown()
                self._watchers.clear()
                raise InitialSyncFailed(kind.value, exc) from exc

        self._stop_task = asyncio.create_task(self._wait_for_stop(stop), name="watch-factory-stop")
        _log.info("watch_factory_initialized", kinds=[k.value for k in self._watchers])

    async def _wait_for_stop(self, stop: asyncio.Event) -> None:
        await stop.wait()
        await self.shutdown()

    async def shutdown(self) -> None:
        """Shut down every watcher.  Safe to call more than once."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        await asyncio.gather(*(watcher.shutdown() for watcher in self._watchers.values()))
        _log.info("watch_factory_stopped")

    async def close(self) -> None:
        """Set the stop signal and wait for shutdown to complete."""
        if self._stop is not None:
            self._stop.set()
        if self._stop_task is not None:
            await asyncio.gather(self._stop_task, return_exceptions=True)
        await self.shutdown()

    # ------------------------------------------------------------------
    # Generic registration
    # ------------------------------------------------------------------

    async def add_handler(
        self,
        kind: ResourceKind,
        funcs: ResourceEventHandler,
        namespace: str = "",
        label_selector: Any = None,
        process_existing: ProcessExisting | None = None,
    ) -> Handler:
        """Register *funcs* for *kind*, optionally filtered.

        An empty namespace and no label selector match every object.

        Raises:
            UnknownKind: *kind* is not watched by this factory.
            InvalidLabelSelector: *label_selector* is malformed.
        """
        watcher = self.watcher(kind)
        handler_id = next(self._handler_ids)
        return await watcher.add_handler(handler_id, funcs, namespace, label_selector, process_existing)

    def remove_handler(self, kind: ResourceKind, handler: Handler | int) -> None:
        """Remove a handler of *kind* by object or id.

        Raises:
            UnknownKind: *kind* is not watched by this factory.
            UnknownHandler: the handler is not registered for *kind*.
            AlreadyDead: removal was already requested.
        """
        watcher = self.watcher(kind)
        if isinstance(handler, Handler):
            if not handler.alive:
                raise AlreadyDead(handler.id)
            handler = handler.id
        watcher.remove_handler(handler)

    def list(self, kind: ResourceKind) -> list[Any]:
        """Snapshot of every mirrored object of *kind*."""
        return self.watcher(kind).list()

    # ------------------------------------------------------------------
    # Typed registration
    # ------------------------------------------------------------------

    async def add_pod_handler(
        self, funcs: ResourceEventHandler, process_existing: ProcessExisting | None = None
    ) -> Handler:
        return await self.add_handler(ResourceKind.POD, funcs, process_existing=process_existing)

    async def add_filtered_pod_handler(
        self,
        namespace: str,
        label_selector: Any,
        funcs: ResourceEventHandler,
        process_existing: ProcessExisting | None = None,
    ) -> Handler:
        return await self.add_handler(ResourceKind.POD, funcs, namespace, label_selector, process_existing)

    def remove_pod_handler(self, handler: Handler | int) -> None:
        self.remove_handler(ResourceKind.POD, handler)

    async def add_service_handler(
        self, funcs: ResourceEventHandler, process_existing: ProcessExisting | None = None
    ) -> Handler:
        return await self.add_handler(ResourceKind.SERVICE, funcs, process_existing=process_existing)

    def remove_service_handler(self, handler: Handler | int) -> None:
        self.remove_handler(ResourceKind.SERVICE, handler)

    async def add_endpoints_handler(
        self, funcs: ResourceEventHandler, process_existing: ProcessExisting | None = None
    ) -> Handler:
        return await self.add_handler(ResourceKind.ENDPOINTS, funcs, process_existing=process_existing)

    async def add_filtered_endpoints_handler(
        self,
        namespace: str,
        label_selector: Any,
        funcs: ResourceEventHandler,
        process_existing: ProcessExisting | None = None,
    ) -> Handler:
        return await self.add_handler(ResourceKind.ENDPOINTS, funcs, namespace, label_selector, process_existing)

    def remove_endpoints_handler(self, handler: Handler | int) -> None:
        self.remove_handler(ResourceKind.ENDPOINTS, handler)

    async def add_policy_handler(
        self, funcs: ResourceEventHandler, process_existing: ProcessExisting | None = None
    ) -> Handler:
        return await self.add_handler(ResourceKind.NETWORK_POLICY, funcs, process_existing=process_existing)

    def remove_policy_handler(self, handler: Handler | int) -> None:
        self.remove_handler(ResourceKind.NETWORK_POLICY, handler)

    async def add_namespace_handler(
        self, funcs: ResourceEventHandler, process_existing: ProcessExisting | None = None
    ) -> Handler:
        return await self.add_handler(ResourceKind.NAMESPACE, funcs, process_existing=process_existing)

    async def add_filtered_namespace_handler(
        self,
        namespace: str,
        label_selector: Any,
        funcs: ResourceEventHandler,
        process_existing: ProcessExisting | None = None,
    ) -> Handler:
        return await self.add_handler(ResourceKind.NAMESPACE, funcs, namespace, label_selector, process_existing)

    def remove_namespace_handler(self, handler: Handler | int) -> None:
        self.remove_handler(ResourceKind.NAMESPACE, handler)

    async def add_node_handler(
        self, funcs: ResourceEventHandler, process_existing: ProcessExisting | None = None
    ) -> Handler:
        return await self.add_handler(ResourceKind.NODE, funcs, process_existing=process_existing)

    def remove_node_handler(self, handler: Handler | int) -> None:
        self.remove_handler(ResourceKind.NODE, handler)
