"""Mirror layer for watchfactory.

Keeps one local, periodically resynced copy of each watched resource kind,
fed by a list/watch transport.

Submodules:
    store     -- Indexed key -> object store.
    informer  -- List/watch reflector with periodic resync.
    transport -- ListWatch protocol and the kubernetes-asyncio transport.
"""

from watchfactory.cache.informer import EventSink, Informer
from watchfactory.cache.store import Store, meta_namespace_key
from watchfactory.cache.transport import KubeTransport, ListWatch, ResourceExpired, Transport, WatchError

__all__ = [
    "EventSink",
    "Informer",
    "KubeTransport",
    "ListWatch",
    "ResourceExpired",
    "Store",
    "Transport",
    "WatchError",
    "meta_namespace_key",
]
