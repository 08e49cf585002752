"""Shared fixtures for watchfactory integration tests.

Provides an in-memory list/watch transport and Kubernetes object factories so
integration tests can drive real informers, watchers and factories without
touching a cluster.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

from watchfactory.models.config import WatchConfig
from watchfactory.models.resources import ResourceKind

# ---------------------------------------------------------------------------
# Object factory helpers
# ---------------------------------------------------------------------------


def _meta(name: str, namespace: str | None, labels: dict[str, str] | None, rv: str) -> k8s_client.V1ObjectMeta:
    return k8s_client.V1ObjectMeta(name=name, namespace=namespace, labels=labels or {}, resource_version=rv)


def make_pod(name: str, namespace: str = "default", labels: dict[str, str] | None = None, rv: str = "1") -> Any:
    """Create a V1Pod with sensible defaults for testing."""
    return k8s_client.V1Pod(metadata=_meta(name, namespace, labels, rv))


def make_service(name: str, namespace: str = "default", labels: dict[str, str] | None = None, rv: str = "1") -> Any:
    return k8s_client.V1Service(metadata=_meta(name, namespace, labels, rv))


def make_namespace(name: str, labels: dict[str, str] | None = None, rv: str = "1") -> Any:
    return k8s_client.V1Namespace(metadata=_meta(name, None, labels, rv))


def make_node(name: str, labels: dict[str, str] | None = None, rv: str = "1") -> Any:
    """Create a V1Node; nodes are cluster-scoped."""
    return k8s_client.V1Node(metadata=_meta(name, None, labels, rv))


# ---------------------------------------------------------------------------
# In-memory transport
# ---------------------------------------------------------------------------


class FakeListWatch:
    """ListWatch fed by the test.

    ``items`` is what the next list returns; ``push`` appends a watch event.
    Pushing ``end_stream()`` closes the current watch (the informer re-opens
    it); pushing an exception makes the watch raise it.
    """

    _END = object()

    def __init__(self, items: list[Any] | None = None, resource_version: str = "1") -> None:
        self.items = list(items or [])
        self.resource_version = resource_version
        self.list_error: Exception | None = None
        self.list_gate: asyncio.Event | None = None
        self.list_calls = 0
        self.watch_calls: list[str] = []
        self._events: asyncio.Queue[Any] = asyncio.Queue()

    async def list(self) -> tuple[list[Any], str]:
        self.list_calls += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.list_error is not None:
            raise self.list_error
        return list(self.items), self.resource_version

    async def watch(self, resource_version: str):  # noqa: ANN201
        self.watch_calls.append(resource_version)
        while True:
            item = await self._events.get()
            if item is self._END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, event_type: str, obj: Any) -> None:
        self._events.put_nowait((event_type, obj))

    def fail(self, exc: Exception) -> None:
        self._events.put_nowait(exc)

    def end_stream(self) -> None:
        self._events.put_nowait(self._END)


class FakeTransport:
    """Transport handing out one FakeListWatch per kind."""

    def __init__(self) -> None:
        self.list_watches: dict[ResourceKind, FakeListWatch] = {kind: FakeListWatch() for kind in ResourceKind}

    def __getitem__(self, kind: ResourceKind) -> FakeListWatch:
        return self.list_watches[kind]

    def list_watch(self, kind: ResourceKind) -> FakeListWatch:
        return self.list_watches[kind]


# ---------------------------------------------------------------------------
# Async helpers
# ---------------------------------------------------------------------------


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds, failing the test after *timeout*."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


async def settle(rounds: int = 20) -> None:
    """Give every runnable task a chance to run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def watch_config() -> WatchConfig:
    """Fast-failing config suitable for tests."""
    return WatchConfig(
        resync_period_seconds=0,
        initial_sync_timeout=2.0,
        relist_delay=0.0,
        shutdown_grace_seconds=1.0,
    )


@pytest.fixture()
def stop_event() -> asyncio.Event:
    return asyncio.Event()
