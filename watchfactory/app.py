"""Application bootstrap for watchfactory.

Wires the components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → metrics → K8s client → watch factory
              → event logger

A failed initial sync of any watched kind is fatal: the process logs the
offending kind and exits non-zero.  Shutdown sets the stop signal, which
makes the factory tear every watcher down.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from watchfactory.config import load_config
from watchfactory.factory import InitialSyncFailed, ResourceEventHandler, WatchFactory
from watchfactory.factory.meta import object_meta
from watchfactory.models.config import WatchFactoryConfig
from watchfactory.models.resources import ResourceKind
from watchfactory.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from watchfactory.cache.transport import KubeTransport, Transport


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class WatchFactoryApp:
    """Application root.  Owns the factory and coordinates its lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self, config: WatchFactoryConfig | None = None, transport: Transport | None = None) -> None:
        self.config = config
        self.factory: WatchFactory | None = None
        self._transport = transport
        self._kube_transport: KubeTransport | None = None
        self._stop_event = asyncio.Event()
        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises:
            InitialSyncFailed: a watched kind could not sync.
            _ComponentError: another mandatory component could not start.
        """
        if self.config is None:
            self.config = load_config()

        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("watchfactory starting", version=_watchfactory_version())

        self._start_metrics()
        if self._transport is None:
            await self._start_k8s_client()

        assert self._transport is not None
        self.factory = WatchFactory(self.config.watch)
        await self.factory.initialize(self._transport, self._stop_event)

        if self.config.log.log_events:
            await self._register_event_logger()

        self._running = True
        self._log.info("watchfactory started", kinds=[k.value for k in self.factory.kinds])

    def _start_metrics(self) -> None:
        assert self._log is not None
        assert self.config is not None
        if not self.config.metrics.port:
            self._log.debug("metrics server disabled")
            return
        try:
            from watchfactory.observability.metrics import start_metrics_server

            start_metrics_server(self.config.metrics.port)
            self._log.info("metrics server started", port=self.config.metrics.port)
        except OSError as exc:
            # Metrics are optional; the watches work without them
            self._log.warning("metrics server failed to start", port=self.config.metrics.port, error=str(exc))

    async def _start_k8s_client(self) -> None:
        """Configure kubernetes-asyncio from in-cluster config or kubeconfig."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]

            from watchfactory.cache.transport import KubeTransport

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._kube_transport = KubeTransport(timeout_seconds=self.config.watch.watch_timeout_seconds)
            self._transport = self._kube_transport
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _register_event_logger(self) -> None:
        """Subscribe a handler that logs every event of every kind."""
        assert self.factory is not None
        for kind in self.factory.kinds:
            await self.factory.add_handler(kind, _event_logger(kind))

    async def stop(self) -> None:
        """Signal shutdown, wait for every watcher to stop, close the k8s client."""
        if self.factory is None and self._kube_transport is None:
            return
        log = self._log or get_logger("app")
        log.info("watchfactory shutting down")
        self._running = False
        if self.factory is not None:
            await self.factory.close()
        await self._stop_k8s_client()
        log.info("watchfactory stopped")

    async def _stop_k8s_client(self) -> None:
        """Close the connection pool of the transport this app created."""
        if self._kube_transport is None:
            return
        transport, self._kube_transport = self._kube_transport, None
        log = self._log or get_logger("app")
        try:
            await transport.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))

    def request_stop(self) -> None:
        """Set the stop signal; the factory shuts itself down in the background."""
        self._stop_event.set()

    async def wait(self) -> None:
        """Block until the stop signal is set."""
        await self._stop_event.wait()


def _event_logger(kind: ResourceKind) -> ResourceEventHandler:
    log = get_logger("events", kind=kind.value)

    def _describe(obj: Any) -> dict[str, str]:
        meta = object_meta(kind, obj)
        return {"namespace": meta.namespace, "name": meta.name}

    return ResourceEventHandler(
        on_add=lambda obj: log.info("object_added", **_describe(obj)),
        on_update=lambda old, new: log.debug("object_updated", **_describe(new)),
        on_delete=lambda obj: log.info("object_deleted", **_describe(obj)),
    )


def _watchfactory_version() -> str:
    from watchfactory import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = WatchFactoryApp()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_stop)

    try:
        await app.start()
        await app.wait()
    except InitialSyncFailed as exc:
        log = get_logger("app")
        log.critical("fatal startup error", kind=exc.kind, error=str(exc.cause))
        raise SystemExit(1) from exc
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        raise SystemExit(1) from exc
    finally:
        await app.stop()


def run() -> None:
    """Console-script entrypoint."""
    asyncio.run(main())
