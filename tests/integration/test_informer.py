"""Integration tests for the Informer mirror.

Covers the initial list, watch event application, re-watch after a closed
stream, re-list after an expired or failed watch (including the
DeletedFinalStateUnknown placeholders it produces), resync, and initial list
failure reporting.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

from watchfactory.cache.informer import Informer
from watchfactory.cache.transport import ResourceExpired
from watchfactory.models.resources import DeletedFinalStateUnknown, ResourceKind

from .conftest import FakeListWatch, eventually, make_pod

pytestmark = pytest.mark.integration


class RecordingSink:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    async def on_add(self, obj: Any) -> None:
        self.calls.append(("add", obj))

    async def on_update(self, old_obj: Any, new_obj: Any) -> None:
        self.calls.append(("update", (old_obj, new_obj)))

    async def on_delete(self, obj: Any) -> None:
        self.calls.append(("delete", obj))

    def kinds(self) -> list[str]:
        return [call for call, _ in self.calls]


def _informer(lw: FakeListWatch, sink: RecordingSink, resync: float = 0) -> Informer:
    return Informer(ResourceKind.POD, lw, sink, resync_period=resync, relist_delay=0.0)


# ---------------------------------------------------------------------------
# Initial sync
# ---------------------------------------------------------------------------


class TestInitialSync:
    async def test_initial_list_populates_store_and_emits_adds(self) -> None:
        lw = FakeListWatch([make_pod("a"), make_pod("b")], resource_version="10")
        sink = RecordingSink()
        informer = _informer(lw, sink)
        informer.start()
        try:
            await asyncio.wait_for(informer.wait_for_sync(), timeout=2.0)
            assert informer.has_synced
            assert sorted(informer.store.list_keys()) == ["default/a", "default/b"]
            assert sink.kinds() == ["add", "add"]
            await eventually(lambda: lw.watch_calls == ["10"])
        finally:
            await informer.stop()

    async def test_initial_list_failure_is_reported(self) -> None:
        lw = FakeListWatch()
        lw.list_error = RuntimeError("forbidden")
        informer = _informer(lw, RecordingSink())
        informer.start()
        try:
            with pytest.raises(RuntimeError, match="forbidden"):
                await asyncio.wait_for(informer.wait_for_sync(), timeout=2.0)
            assert not informer.has_synced
            # The initial list is not retried
            assert lw.list_calls == 1
        finally:
            await informer.stop()


# ---------------------------------------------------------------------------
# Watch events
# ---------------------------------------------------------------------------


class TestWatchEvents:
    async def test_watch_events_update_store_in_order(self) -> None:
        lw = FakeListWatch([make_pod("a")])
        sink = RecordingSink()
        informer = _informer(lw, sink)
        informer.start()
        try:
            await informer.wait_for_sync()
            lw.push("ADDED", make_pod("b", rv="2"))
            lw.push("MODIFIED", make_pod("a", rv="3", labels={"v": "2"}))
            lw.push("DELETED", make_pod("b", rv="4"))
            await eventually(lambda: len(sink.calls) == 4)

            assert sink.kinds() == ["add", "add", "update", "delete"]
            old, new = sink.calls[2][1]
            assert old.metadata.resource_version == "1"
            assert new.metadata.labels == {"v": "2"}
            assert informer.store.list_keys() == ["default/a"]
        finally:
            await informer.stop()

    async def test_modified_for_unknown_object_is_an_add(self) -> None:
        lw = FakeListWatch()
        sink = RecordingSink()
        informer = _informer(lw, sink)
        informer.start()
        try:
            await informer.wait_for_sync()
            lw.push("MODIFIED", make_pod("late"))
            await eventually(lambda: len(sink.calls) == 1)
            assert sink.kinds() == ["add"]
        finally:
            await informer.stop()

    async def test_malformed_object_is_skipped_without_breaking_watch(self) -> None:
        lw = FakeListWatch()
        sink = RecordingSink()
        informer = Informer(ResourceKind.POD, lw, sink, resync_period=0, relist_delay=30.0)
        informer.start()
        try:
            await informer.wait_for_sync()
            lw.push("ADDED", k8s_client.V1Pod(metadata=None))
            lw.push("ADDED", make_pod("good"))
            await eventually(lambda: len(sink.calls) == 1)

            assert sink.calls[0][1].metadata.name == "good"
            assert informer.store.list_keys() == ["default/good"]
            assert lw.list_calls == 1
            assert lw.watch_calls == ["1"]
        finally:
            await informer.stop()

    async def test_malformed_listed_object_is_skipped(self) -> None:
        lw = FakeListWatch([k8s_client.V1Pod(metadata=None), make_pod("good")])
        sink = RecordingSink()
        informer = _informer(lw, sink)
        informer.start()
        try:
            await asyncio.wait_for(informer.wait_for_sync(), timeout=2.0)
            assert sink.kinds() == ["add"]
            assert informer.store.list_keys() == ["default/good"]
        finally:
            await informer.stop()

    async def test_closed_stream_rewatches_from_last_resource_version(self) -> None:
        lw = FakeListWatch(resource_version="5")
        informer = _informer(lw, RecordingSink())
        informer.start()
        try:
            await informer.wait_for_sync()
            lw.push("ADDED", make_pod("a", rv="7"))
            lw.end_stream()
            await eventually(lambda: lw.watch_calls == ["5", "7"])
            assert lw.list_calls == 1
        finally:
            await informer.stop()


# ---------------------------------------------------------------------------
# Re-list
# ---------------------------------------------------------------------------


class TestRelist:
    async def test_expired_watch_relists_and_diffs_store(self) -> None:
        lw = FakeListWatch([make_pod("gone"), make_pod("kept")])
        sink = RecordingSink()
        informer = _informer(lw, sink)
        informer.start()
        try:
            await informer.wait_for_sync()
            sink.calls.clear()

            lw.items = [make_pod("kept", rv="2"), make_pod("new", rv="3")]
            lw.fail(ResourceExpired("too old resource version"))
            await eventually(lambda: lw.list_calls == 2 and len(sink.calls) == 3)

            assert sink.kinds() == ["update", "add", "delete"]
            placeholder = sink.calls[2][1]
            assert isinstance(placeholder, DeletedFinalStateUnknown)
            assert placeholder.key == "default/gone"
            assert placeholder.obj.metadata.name == "gone"
            assert sorted(informer.store.list_keys()) == ["default/kept", "default/new"]
        finally:
            await informer.stop()

    async def test_transport_error_after_sync_relists(self) -> None:
        lw = FakeListWatch([make_pod("a")])
        informer = _informer(lw, RecordingSink())
        informer.start()
        try:
            await informer.wait_for_sync()
            lw.fail(ConnectionResetError("connection reset"))
            await eventually(lambda: lw.list_calls == 2)
            assert informer.running
        finally:
            await informer.stop()


# ---------------------------------------------------------------------------
# Resync and stop
# ---------------------------------------------------------------------------


class TestResyncAndStop:
    async def test_resync_redelivers_add_for_every_object(self) -> None:
        lw = FakeListWatch([make_pod("a"), make_pod("b")])
        sink = RecordingSink()
        informer = _informer(lw, sink)
        informer.start()
        try:
            await informer.wait_for_sync()
            sink.calls.clear()
            await informer.resync()
            assert sink.kinds() == ["add", "add"]
        finally:
            await informer.stop()

    async def test_periodic_resync_fires(self) -> None:
        lw = FakeListWatch([make_pod("a")])
        sink = RecordingSink()
        informer = _informer(lw, sink, resync=0.02)
        informer.start()
        try:
            await informer.wait_for_sync()
            await eventually(lambda: len(sink.calls) >= 3)
            assert set(sink.kinds()) == {"add"}
        finally:
            await informer.stop()

    async def test_stop_cancels_tasks(self) -> None:
        informer = _informer(FakeListWatch(), RecordingSink(), resync=60)
        informer.start()
        await informer.wait_for_sync()
        assert informer.running
        await informer.stop()
        assert not informer.running
