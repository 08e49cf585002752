"""Prometheus metrics for the watch factory."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, start_http_server

events_total = Counter(
    "watchfactory_events_total",
    "Events received from the mirror, per kind and event type.",
    ["kind", "type"],
)

events_dropped_total = Counter(
    "watchfactory_events_dropped_total",
    "Events dropped before reaching any handler.",
    ["kind", "reason"],
)

handler_errors_total = Counter(
    "watchfactory_handler_errors_total",
    "Exceptions raised by subscriber callbacks.",
    ["kind"],
)

handlers = Gauge(
    "watchfactory_handlers",
    "Handlers currently present in a watcher registry.",
    ["kind"],
)

queue_depth = Gauge(
    "watchfactory_queue_depth",
    "Events waiting in an ordered-kind event queue.",
    ["kind", "queue"],
)


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP on *port*."""
    start_http_server(port)
