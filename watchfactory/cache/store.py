"""Indexed in-memory object store backing one mirror.

Objects are keyed by ``namespace/name`` (or ``name`` for cluster-scoped
objects) and indexed by namespace.  Only the owning Informer writes to the
store; everything else reads snapshots.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from watchfactory.models.resources import DeletedFinalStateUnknown


def meta_namespace_key(obj: Any) -> str:
    """Return the store key of *obj*.

    Placeholders carry the key of the object they stand in for.
    """
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    metadata = getattr(obj, "metadata", None)
    if metadata is None:
        raise ValueError(f"object {type(obj).__name__} has no metadata")
    namespace = metadata.namespace or ""
    name = metadata.name or ""
    if namespace:
        return f"{namespace}/{name}"
    return name


def _namespace_of(key: str) -> str:
    namespace, sep, _ = key.partition("/")
    return namespace if sep else ""


class Store:
    """Key -> object map with a namespace index."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}
        self._by_namespace: dict[str, set[str]] = defaultdict(set)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def add(self, obj: Any) -> Any | None:
        """Insert or replace *obj*; return the previous object, if any."""
        key = meta_namespace_key(obj)
        old = self._items.get(key)
        self._items[key] = obj
        self._by_namespace[_namespace_of(key)].add(key)
        return old

    update = add

    def delete(self, obj: Any) -> Any | None:
        """Remove *obj*; return what the store held under its key."""
        return self.delete_key(meta_namespace_key(obj))

    def delete_key(self, key: str) -> Any | None:
        old = self._items.pop(key, None)
        namespace = _namespace_of(key)
        keys = self._by_namespace.get(namespace)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._by_namespace[namespace]
        return old

    def get_by_key(self, key: str) -> Any | None:
        return self._items.get(key)

    def list(self) -> list[Any]:
        return list(self._items.values())

    def list_keys(self) -> list[str]:
        return list(self._items)

    def by_namespace(self, namespace: str) -> list[Any]:
        """Return every object stored in *namespace*."""
        return [self._items[key] for key in self._by_namespace.get(namespace, ())]
