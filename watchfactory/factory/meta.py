"""Resource metadata accessor.

Extracts namespace, name and labels from a mirrored object after checking
that the object really is of the kind the caller expects.
"""

from __future__ import annotations

from typing import Any

from watchfactory.factory.errors import TypeMismatch, UnrecoverableTombstone
from watchfactory.models.resources import DeletedFinalStateUnknown, ObjectMeta, ResourceKind


def object_key(namespace: str, name: str) -> str:
    """Return the mirror key of an object: ``namespace/name`` or ``name``."""
    if namespace:
        return f"{namespace}/{name}"
    return name


def object_meta(kind: ResourceKind, obj: Any) -> ObjectMeta:
    """Return the ObjectMeta of *obj*.

    Raises:
        TypeMismatch: *obj* is not an instance of *kind*'s model class.
    """
    if not isinstance(obj, kind.model_class):
        raise TypeMismatch(kind.value, obj)
    metadata = obj.metadata
    if metadata is None:
        return ObjectMeta(namespace="", name="")
    return ObjectMeta(
        namespace=metadata.namespace or "",
        name=metadata.name or "",
        labels=dict(metadata.labels or {}),
    )


def ensure_object_on_delete(kind: ResourceKind, obj: Any) -> Any:
    """Return the real object carried by a delete notification.

    Deletes may arrive wrapped in a DeletedFinalStateUnknown when the mirror
    missed the final state; the last known object is unwrapped here.

    Raises:
        UnrecoverableTombstone: *obj* is neither of *kind* nor a placeholder
            wrapping an object of *kind*.
    """
    if isinstance(obj, kind.model_class):
        return obj
    if not isinstance(obj, DeletedFinalStateUnknown):
        raise UnrecoverableTombstone(kind.value, obj)
    if not isinstance(obj.obj, kind.model_class):
        raise UnrecoverableTombstone(kind.value, obj.obj)
    return obj.obj
