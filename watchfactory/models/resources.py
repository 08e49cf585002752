"""Resource kinds, object metadata and event data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]


class DeliveryMode(StrEnum):
    """How a watcher fans events out to its handlers."""

    DIRECT = "direct"
    ORDERED = "ordered"


class ResourceKind(StrEnum):
    """Resource kinds the watch factory knows how to mirror."""

    POD = "pod"
    SERVICE = "service"
    ENDPOINTS = "endpoints"
    NETWORK_POLICY = "network_policy"
    NAMESPACE = "namespace"
    NODE = "node"

    @property
    def delivery_mode(self) -> DeliveryMode:
        # Per-node processing is expensive enough that it must not stall the
        # other kinds, so node events go through the sharded queues.
        if self is ResourceKind.NODE:
            return DeliveryMode.ORDERED
        return DeliveryMode.DIRECT

    @property
    def model_class(self) -> type:
        """kubernetes_asyncio model class of objects of this kind."""
        return _MODEL_CLASSES[self]

    @property
    def namespaced(self) -> bool:
        return self not in (ResourceKind.NAMESPACE, ResourceKind.NODE)


_MODEL_CLASSES: dict[ResourceKind, type] = {
    ResourceKind.POD: k8s_client.V1Pod,
    ResourceKind.SERVICE: k8s_client.V1Service,
    ResourceKind.ENDPOINTS: k8s_client.V1Endpoints,
    ResourceKind.NETWORK_POLICY: k8s_client.V1NetworkPolicy,
    ResourceKind.NAMESPACE: k8s_client.V1Namespace,
    ResourceKind.NODE: k8s_client.V1Node,
}

ALL_KINDS: tuple[ResourceKind, ...] = tuple(ResourceKind)


class EventType(StrEnum):
    """Kind of change carried by an Event."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class WatcherState(StrEnum):
    """Lifecycle of a ResourceWatcher."""

    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ObjectMeta:
    """Identity and labels of a mirrored object."""

    namespace: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


@dataclass(frozen=True)
class Event:
    """One add/update/delete notification travelling through an event queue.

    Ephemeral: produced by the watcher from a mirror callback and consumed
    by exactly one shard worker.
    """

    type: EventType
    obj: Any
    old_obj: Any = None


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Placeholder delivered on delete when the final object state was missed.

    The mirror produces it when a re-list no longer contains an object it
    still held; ``obj`` is the last state the mirror knew about.
    """

    key: str
    obj: Any
