"""Event queue shards for ordered resource kinds.

Every ordered watcher owns a fixed set of EventQueues.  Events are routed to
a queue by a stable hash of the object's ``namespace/name`` so that all
events of one object are consumed, in order, by the same single worker,
while events of different objects are processed concurrently.

The queues are bounded (capacity 1 by default) and ``enqueue`` awaits a free
slot: a slow subscriber pushes back on the mirror's delivery path instead of
having events dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from watchfactory.factory.handler import Handler, deliver
from watchfactory.models.resources import Event, ResourceKind
from watchfactory.observability.metrics import events_dropped_total, queue_depth

_log = structlog.get_logger(component="factory.queue")

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193

# Marker put behind any pending events when a queue is closed.
_CLOSED = object()

HandlerSnapshot = Callable[[], Awaitable[list[Handler]]]


def fnv32(data: bytes) -> int:
    """32-bit FNV-1 hash."""
    h = _FNV32_OFFSET
    for byte in data:
        h = (h * _FNV32_PRIME) & 0xFFFFFFFF
        h ^= byte
    return h


def queue_index(namespace: str, name: str, num_queues: int) -> int:
    """Return the queue an object with this identity is routed to."""
    key = f"{namespace}/{name}" if namespace else name
    return fnv32(key.encode("utf-8")) % num_queues


class EventQueue:
    """One bounded, single-consumer shard plus its worker task."""

    def __init__(self, kind: ResourceKind, index: int, maxsize: int = 1) -> None:
        self.kind = kind
        self.index = index
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, snapshot: HandlerSnapshot, stop: asyncio.Event) -> None:
        """Spawn the worker task draining this queue."""
        self._task = asyncio.create_task(
            self.run(snapshot, stop),
            name=f"event-queue-{self.kind.value}-{self.index}",
        )

    async def enqueue(self, event: Event) -> None:
        """Append *event*, waiting for a free slot when the queue is full."""
        if self._closed:
            events_dropped_total.labels(kind=self.kind.value, reason="queue_closed").inc()
            _log.debug("event_dropped_queue_closed", kind=self.kind.value, queue=self.index)
            return
        await self._queue.put(event)
        queue_depth.labels(kind=self.kind.value, queue=str(self.index)).set(self._queue.qsize())

    async def run(self, snapshot: HandlerSnapshot, stop: asyncio.Event) -> None:
        """Deliver queued events until the queue is closed or *stop* fires."""
        stop_wait = asyncio.ensure_future(stop.wait())
        try:
            while True:
                get = asyncio.ensure_future(self._queue.get())
                done, _ = await asyncio.wait({get, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                if get not in done:
                    get.cancel()
                    return
                item = get.result()
                queue_depth.labels(kind=self.kind.value, queue=str(self.index)).set(self._queue.qsize())
                if not isinstance(item, Event):
                    # Close marker
                    return
                # The registry lock is only held while copying the handler
                # list; subscriber callbacks run outside of it.
                for handler in await snapshot():
                    await deliver(handler, item)
        finally:
            stop_wait.cancel()
            _log.debug("event_queue_worker_exited", kind=self.kind.value, queue=self.index)

    async def close(self, grace: float) -> None:
        """Close the queue and wait up to *grace* seconds for the worker.

        Events accepted before the close are still delivered unless the
        worker has already exited on the stop signal.  A worker that does not
        finish within the grace period is cancelled.
        """
        if self._closed:
            return
        self._closed = True
        task = self._task
        if task is None:
            return
        try:
            await asyncio.wait_for(self._drain(task), timeout=grace)
        except TimeoutError:
            _log.warning("event_queue_drain_timed_out", kind=self.kind.value, queue=self.index, timeout=grace)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _drain(self, task: asyncio.Task[None]) -> None:
        put = asyncio.ensure_future(self._queue.put(_CLOSED))
        await asyncio.wait({put, task}, return_when=asyncio.FIRST_COMPLETED)
        if not put.done():
            put.cancel()
        await asyncio.gather(task, return_exceptions=True)
