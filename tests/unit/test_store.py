"""Tests for the indexed object store."""

from __future__ import annotations

import pytest
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

from watchfactory.cache.store import Store, meta_namespace_key
from watchfactory.models.resources import DeletedFinalStateUnknown


def _pod(name: str, namespace: str = "default", rv: str = "1") -> k8s_client.V1Pod:
    return k8s_client.V1Pod(metadata=k8s_client.V1ObjectMeta(name=name, namespace=namespace, resource_version=rv))


class TestMetaNamespaceKey:
    def test_namespaced(self) -> None:
        assert meta_namespace_key(_pod("web", "prod")) == "prod/web"

    def test_cluster_scoped(self) -> None:
        node = k8s_client.V1Node(metadata=k8s_client.V1ObjectMeta(name="node-1"))
        assert meta_namespace_key(node) == "node-1"

    def test_placeholder_carries_its_key(self) -> None:
        assert meta_namespace_key(DeletedFinalStateUnknown(key="prod/web", obj=None)) == "prod/web"

    def test_missing_metadata_raises(self) -> None:
        with pytest.raises(ValueError, match="no metadata"):
            meta_namespace_key(k8s_client.V1Pod())


class TestStore:
    def test_add_returns_previous_object(self) -> None:
        store = Store()
        first = _pod("web", rv="1")
        second = _pod("web", rv="2")
        assert store.add(first) is None
        assert store.update(second) is first
        assert len(store) == 1
        assert store.get_by_key("default/web") is second

    def test_delete_removes_from_namespace_index(self) -> None:
        store = Store()
        store.add(_pod("a", "ns-a"))
        store.add(_pod("b", "ns-a"))
        store.add(_pod("c", "ns-b"))

        store.delete(_pod("a", "ns-a"))
        assert "ns-a/a" not in store
        assert [p.metadata.name for p in store.by_namespace("ns-a")] == ["b"]

        store.delete_key("ns-a/b")
        assert store.by_namespace("ns-a") == []
        assert sorted(store.list_keys()) == ["ns-b/c"]

    def test_delete_of_unknown_key_is_a_noop(self) -> None:
        store = Store()
        assert store.delete_key("nowhere/nothing") is None
        assert len(store) == 0

    def test_delete_accepts_placeholder(self) -> None:
        store = Store()
        pod = _pod("web", "prod")
        store.add(pod)
        assert store.delete(DeletedFinalStateUnknown(key="prod/web", obj=pod)) is pod
        assert len(store) == 0

    def test_cluster_scoped_objects_index_under_empty_namespace(self) -> None:
        store = Store()
        node = k8s_client.V1Node(metadata=k8s_client.V1ObjectMeta(name="node-1"))
        store.add(node)
        assert store.by_namespace("") == [node]
        assert store.list() == [node]
