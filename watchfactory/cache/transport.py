"""List/watch transport for the mirrors.

ListWatch   -- the two calls a mirror needs for one resource kind.
Transport   -- hands out a ListWatch per kind.
KubeTransport -- kubernetes-asyncio implementation against a live cluster.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from watchfactory.models.resources import ResourceKind

_GONE = 410


class ResourceExpired(Exception):
    """The watch's resource version is too old; the mirror must re-list."""


class WatchError(Exception):
    """The server terminated a watch with an error status."""


class ListWatch(Protocol):
    async def list(self) -> tuple[list[Any], str]:
        """Return every object of the kind plus the list's resource version."""

    def watch(self, resource_version: str) -> AsyncIterator[tuple[str, Any]]:
        """Stream ``(type, object)`` changes after *resource_version*.

        Types are ``ADDED``, ``MODIFIED``, ``DELETED`` and ``BOOKMARK``.
        Raises ResourceExpired when *resource_version* is gone.
        """


class Transport(Protocol):
    def list_watch(self, kind: ResourceKind) -> ListWatch: ...


class KubeListWatch:
    """ListWatch over one kubernetes-asyncio ``list_*`` API method."""

    def __init__(self, list_fn: Callable[..., Any], timeout_seconds: int = 300) -> None:
        self._list_fn = list_fn
        self._timeout_seconds = timeout_seconds

    async def list(self) -> tuple[list[Any], str]:
        result = await self._list_fn()
        resource_version = ""
        if result.metadata is not None:
            resource_version = result.metadata.resource_version or ""
        return list(result.items or []), resource_version

    async def watch(self, resource_version: str) -> AsyncIterator[tuple[str, Any]]:
        try:
            async with watch.Watch() as w:
                async for event in w.stream(
                    self._list_fn,
                    resource_version=resource_version,
                    timeout_seconds=self._timeout_seconds,
                    allow_watch_bookmarks=True,
                ):
                    event_type = event["type"]
                    if event_type == "ERROR":
                        raw = event.get("raw_object") or {}
                        if raw.get("code") == _GONE:
                            raise ResourceExpired(str(raw.get("message", "")))
                        raise WatchError(f"{raw.get('reason', '')}: {raw.get('message', '')}")
                    yield event_type, event["object"]
        except ApiException as exc:
            if exc.status == _GONE:
                raise ResourceExpired(str(exc.reason)) from exc
            raise


class KubeTransport:
    """Transport backed by the cluster's CoreV1 and NetworkingV1 APIs.

    Both APIs share one ApiClient; call ``close()`` once the factory using
    this transport has shut down.
    """

    def __init__(self, api_client: Any | None = None, timeout_seconds: int = 300) -> None:
        self._api_client = api_client if api_client is not None else k8s_client.ApiClient()
        self._core = k8s_client.CoreV1Api(self._api_client)
        self._networking = k8s_client.NetworkingV1Api(self._api_client)
        self._timeout_seconds = timeout_seconds

    def list_watch(self, kind: ResourceKind) -> ListWatch:
        list_fns: dict[ResourceKind, Callable[..., Any]] = {
            ResourceKind.POD: self._core.list_pod_for_all_namespaces,
            ResourceKind.SERVICE: self._core.list_service_for_all_namespaces,
            ResourceKind.ENDPOINTS: self._core.list_endpoints_for_all_namespaces,
            ResourceKind.NETWORK_POLICY: self._networking.list_network_policy_for_all_namespaces,
            ResourceKind.NAMESPACE: self._core.list_namespace,
            ResourceKind.NODE: self._core.list_node,
        }
        return KubeListWatch(list_fns[kind], timeout_seconds=self._timeout_seconds)

    async def close(self) -> None:
        """Close the shared ApiClient connection pool."""
        await self._api_client.close()
