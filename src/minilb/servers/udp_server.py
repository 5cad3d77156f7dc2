from __future__ import annotations

import logging
import socketserver
import threading
from concurrent.futures import Future
from typing import Optional, Tuple

from ..errors import ListenerError
from .handler import QueryHandler

logger = logging.getLogger(__name__)


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles one UDP DNS datagram.
    This class is instantiated per datagram by the ThreadingUDPServer; the
    QueryHandler is taken from the owning server.
    """

    def handle(self) -> None:
        """Answer a single datagram.

        Inputs:
          - None (called by socketserver for each UDP datagram).
        Outputs:
          - None; sends at most one reply. Unparseable datagrams get none.
        """
        data, sock = self.request
        query_handler: QueryHandler = self.server.query_handler  # type: ignore[attr-defined]
        try:
            result = query_handler.handle(data)
        except Exception:  # pragma: no cover - QueryHandler already converts failures
            logger.exception("Unhandled error answering %s", self.client_address[0])
            return
        if not result.wire:
            return
        try:
            sock.sendto(result.wire, self.client_address)
        except OSError as exc:
            logger.warning("Failed to send reply to %s: %s", self.client_address[0], exc)


class _ThreadingUDPServer(socketserver.ThreadingUDPServer):
    daemon_threads = True

    def __init__(self, server_address, handler_cls, query_handler: QueryHandler):
        self.query_handler = query_handler
        super().__init__(server_address, handler_cls)


class DNSServer:
    """
    Brief: UDP DNS listener answering through a QueryHandler.

    Inputs:
      - host: Listen address ("" or "0.0.0.0" for all interfaces).
      - port: Listen port; 0 picks a free port.
      - handler: QueryHandler shared by all worker threads.

    Outputs:
      - DNSServer; call start() to bind and serve in the background.

    Example:
        >>> server = DNSServer("127.0.0.1", 0, handler)  # doctest: +SKIP
        >>> host, port = server.start().result(timeout=5)  # doctest: +SKIP
        >>> server.stop()  # doctest: +SKIP
    """

    def __init__(self, host: str, port: int, handler: QueryHandler) -> None:
        self.host = host
        self.port = int(port)
        self.handler = handler
        self.server: Optional[_ThreadingUDPServer] = None
        self._thread: Optional[threading.Thread] = None

    def _bind(self) -> _ThreadingUDPServer:
        try:
            return _ThreadingUDPServer((self.host, self.port), DNSUDPHandler, self.handler)
        except PermissionError as e:
            logger.error(
                "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                self.host,
                self.port,
                e,
            )
            raise ListenerError(f"bind {self.host}:{self.port}: {e}") from e
        except OSError as e:
            raise ListenerError(f"bind {self.host}:{self.port}: {e}") from e

    def _run(self, ready: "Future[Tuple[str, int]]") -> None:
        try:
            self.server = self._bind()
        except ListenerError as exc:
            ready.set_exception(exc)
            return

        address = self.server.server_address[:2]
        logger.info("DNS UDP server listening on %s:%d", address[0], address[1])
        ready.set_result((address[0], address[1]))
        try:
            self.server.serve_forever()
        except Exception:
            logger.exception("DNS UDP server loop failed")

    def start(self) -> "Future[Tuple[str, int]]":
        """Brief: Bind and serve on a background thread.

        Inputs:
          - None
        Outputs:
          - Future resolving to the bound (host, port), or failing with
            ListenerError when the socket cannot be bound.
        """

        ready: "Future[Tuple[str, int]]" = Future()
        self._thread = threading.Thread(
            target=self._run, args=(ready,), name="minilb-dns-udp", daemon=True
        )
        self._thread.start()
        return ready

    def stop(self) -> None:
        """Request graceful shutdown and close the underlying UDP socket.

        Inputs:
          - None
        Outputs:
          - None; best-effort shutdown suitable for use from signal handlers.
        """
        if self.server is None:
            return
        try:
            self.server.shutdown()
        except Exception:
            logger.exception("Error while shutting down UDP server")
        try:
            self.server.server_close()
        except Exception:
            logger.exception("Error while closing UDP server socket")
        if self._thread is not None:
            self._thread.join(timeout=5)
