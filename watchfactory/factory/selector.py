"""Label selector evaluation.

Turns a Kubernetes LabelSelector (``matchLabels`` plus ``matchExpressions``)
into a predicate over an object's label set.  Accepts either a
kubernetes_asyncio ``V1LabelSelector`` or its plain-dict API form.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

from watchfactory.factory.errors import InvalidLabelSelector

LabelPredicate = Callable[[Mapping[str, str]], bool]

_OPERATORS = {"In", "NotIn", "Exists", "DoesNotExist"}


@dataclass(frozen=True)
class Requirement:
    """One parsed selector requirement."""

    key: str
    operator: str
    values: frozenset[str]

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == "In":
            return self.key in labels and labels[self.key] in self.values
        if self.operator == "NotIn":
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == "Exists":
            return self.key in labels
        return self.key not in labels


def _requirement(key: Any, operator: Any, values: Any) -> Requirement:
    if not key:
        raise InvalidLabelSelector("label selector requirement has an empty key")
    if operator not in _OPERATORS:
        raise InvalidLabelSelector(f"{operator!r} is not a valid label selector operator")
    vals = frozenset(str(v) for v in (values or []))
    if operator in ("In", "NotIn") and not vals:
        raise InvalidLabelSelector(f"values must be non-empty for operator {operator} on key {key!r}")
    if operator in ("Exists", "DoesNotExist") and vals:
        raise InvalidLabelSelector(f"values must be empty for operator {operator} on key {key!r}")
    return Requirement(key=str(key), operator=str(operator), values=vals)


def parse_selector(selector: Any) -> list[Requirement]:
    """Parse *selector* into a list of requirements (ANDed together).

    Raises:
        InvalidLabelSelector: the selector is malformed.
    """
    if isinstance(selector, k8s_client.V1LabelSelector):
        match_labels = selector.match_labels or {}
        expressions = [(e.key, e.operator, e.values) for e in (selector.match_expressions or [])]
    elif isinstance(selector, Mapping):
        match_labels = selector.get("matchLabels") or selector.get("match_labels") or {}
        raw_expressions = selector.get("matchExpressions") or selector.get("match_expressions") or []
        try:
            expressions = [(e["key"], e["operator"], e.get("values")) for e in raw_expressions]
        except (KeyError, TypeError, AttributeError) as exc:
            raise InvalidLabelSelector(f"malformed matchExpressions: {exc}") from exc
    else:
        raise InvalidLabelSelector(f"unsupported label selector type {type(selector).__name__}")

    requirements = [_requirement(key, "In", [value]) for key, value in sorted(match_labels.items())]
    requirements.extend(_requirement(key, op, values) for key, op, values in expressions)
    return requirements


def selector_predicate(selector: Any) -> LabelPredicate:
    """Build a label predicate from *selector*.

    An empty selector matches every label set.
    """
    requirements = parse_selector(selector)

    def _matches(labels: Mapping[str, str]) -> bool:
        return all(req.matches(labels) for req in requirements)

    return _matches
