from __future__ import annotations

import logging
import signal
import sys
import threading
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, List, Optional, Tuple

from kubernetes.config.config_exception import ConfigException

from . import __version__
from .cluster.client import build_api_client
from .cluster.watch import ClusterWatchDriver
from .config.config_parser import load_settings
from .config.config_schema import Settings
from .config.logging_config import init_logging
from .controller.status import ServiceStatusReconciler
from .errors import ConfigError, ListenerError
from .resolve.chain import RouteLookupChain
from .resolve.endpoints import EndpointAggregator
from .resolve.hostnames import HostnameCache
from .servers.handler import QueryHandler
from .servers.udp_server import DNSServer

logger = logging.getLogger("minilb.main")

# Upper bound on waiting for the first list of every watched kind.
SYNC_TIMEOUT = 60.0
BIND_TIMEOUT = 10.0


def build_components(
    settings: Settings, api_client: Any
) -> Tuple[ClusterWatchDriver, DNSServer]:
    """Brief: Wire the watch driver, reconciler, lookup chain and DNS server.

    Inputs:
      - settings: Validated Settings.
      - api_client: kubernetes ApiClient.

    Outputs:
      - (driver, server). Neither is started yet.
    """

    cache = HostnameCache()
    driver = ClusterWatchDriver(api_client, resync=settings.resync)
    driver.setup()

    reconciler = ServiceStatusReconciler(
        driver.core_api,
        cache,
        settings.domain,
        lb_class=settings.lb_class,
        hostname_annotation=settings.hostname_annotation,
        write_status=settings.controller,
    )
    driver.add_service_handler(reconciler)

    chain = RouteLookupChain.from_driver(cache, driver)
    handler = QueryHandler(
        chain,
        EndpointAggregator(driver.endpoint_slices),
        settings.domain,
        settings.ttl,
    )
    server = DNSServer(settings.listen_host, settings.listen_port, handler)
    return driver, server


def _install_signal_handlers(stop: Callable[[str], None]) -> None:
    def _handler(signum, frame):  # noqa: ARG001
        stop(signal.Signals(signum).name)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handler)
        except ValueError:  # pragma: no cover - not on the main thread
            logger.warning("Cannot install %s handler outside the main thread", sig.name)


def main(argv: Optional[List[str]] = None, api_client: Any = None) -> int:
    """
    Main entry point for the minilb resolver.

    Inputs:
      - argv: Command-line arguments (defaults to sys.argv[1:]).
      - api_client: Optional pre-built kubernetes ApiClient (tests).
    Outputs:
      - int: Process exit code; 0 after a clean signal-driven shutdown, 1 on
        configuration, credential or bind failures.

    Example:
        >>> main(["--listen", "127.0.0.1:5353", "--controller"])  # doctest: +SKIP
    """
    try:
        settings = load_settings(argv)
    except ConfigError as exc:
        print(f"minilb: {exc}", file=sys.stderr)
        return 1

    init_logging(settings.logging.model_dump())
    logger.info(
        "Starting minilb %s domain=%s listen=%s controller=%s",
        __version__,
        settings.domain,
        settings.listen,
        settings.controller,
    )

    if api_client is None:
        try:
            api_client = build_api_client(settings.kubeconfig)
        except (ConfigException, OSError) as exc:
            logger.error("Cannot load Kubernetes credentials: %s", exc)
            return 1

    driver, server = build_components(settings, api_client)
    driver.start()
    if not driver.wait_synced(timeout=SYNC_TIMEOUT):
        logger.warning("Initial cluster sync incomplete after %.0fs; serving anyway", SYNC_TIMEOUT)

    try:
        host, port = server.start().result(timeout=BIND_TIMEOUT)
    except (ListenerError, FuturesTimeoutError) as exc:
        logger.error("Failed to start DNS server: %s", exc)
        driver.stop()
        return 1
    logger.info("Serving %s on %s:%d", settings.domain, host, port)

    shutdown_event = threading.Event()

    def _request_stop(reason: str) -> None:
        if not shutdown_event.is_set():
            logger.info("Received %s, shutting down", reason)
        shutdown_event.set()

    _install_signal_handlers(_request_stop)

    try:
        while not shutdown_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        _request_stop("KeyboardInterrupt")

    server.stop()
    driver.stop()
    logger.info("minilb stopped")
    return 0


def console_main() -> None:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover
    console_main()
