"""Listening socket ownership and the connection acceptance loop."""

import errno
import socket
import threading
import time
from typing import Optional

from portal.bootstrap.config import SECURITY_HEADERS, ServerConfig
from portal.bootstrap.socket_factory import create_server_socket
from portal.domain.correlation_id import CorrelationLoggerAdapter, child_logger
from portal.domain.response_builders import draining_response
from portal.lifecycle.state import ServerLifecycle
from portal.pipeline.io import send_response
from portal.pipeline.middleware import Handler
from portal.transport.context import WorkerContext
from portal.transport.worker import handle_client

# accept() failures that say nothing about the listener itself
TEMPORARY_ACCEPT_ERRNOS = {
    errno.ECONNABORTED,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
}
ACCEPT_BACKOFF_SECONDS = 0.05
MAX_ACCEPT_BACKOFF_SECONDS = 1.0


class HttpServer:
    """Accepts connections and serves each on its own worker thread."""

    def __init__(
        self,
        config: ServerConfig,
        handler: Handler,
        lifecycle: ServerLifecycle,
        logger: CorrelationLoggerAdapter,
    ) -> None:
        self._config = config
        self._lifecycle = lifecycle
        self._logger = child_logger(logger, "transport.accept")
        self._context = WorkerContext(
            handler=handler,
            lifecycle=lifecycle,
            config=config,
            logger=child_logger(logger, "transport.worker"),
        )
        self._stopped = threading.Event()
        self.server_address: Optional[tuple[str, int]] = None

    def _start_worker(
        self, client_socket: socket.socket, client_address: tuple[str, int]
    ) -> None:
        client_addr_str = f"{client_address[0]}:{client_address[1]}"
        self._logger.debug(
            "Client connection accepted",
            extra={"event": "client_accepted", "client": client_addr_str},
        )
        thread = threading.Thread(
            target=handle_client,
            args=(client_socket, client_address, self._context),
            name=f"portal-worker-{client_addr_str}",
            daemon=True,
        )
        self._lifecycle.register_worker(thread)
        thread.start()

    def serve_forever(self) -> None:
        """Bind the listener and accept connections until shutdown begins.

        Returns normally once the server is shut down; any other listener
        failure is raised.
        """
        try:
            server_socket = create_server_socket(self._config)
            self.server_address = server_socket.getsockname()[:2]
            self._logger.info(
                "Server listening for connections",
                extra={
                    "event": "server_listening",
                    "host": self.server_address[0],
                    "port": self.server_address[1],
                },
            )
            try:
                self._accept_loop(server_socket)
            finally:
                server_socket.close()
                self._logger.info(
                    "Listener closed", extra={"event": "listener_closed"}
                )
        finally:
            self._stopped.set()

    def _accept_loop(self, server_socket: socket.socket) -> None:
        backoff = 0.0
        while not self._lifecycle.should_stop():
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as error:
                if self._lifecycle.should_stop():
                    break
                if error.errno not in TEMPORARY_ACCEPT_ERRNOS:
                    raise
                backoff = min(
                    max(backoff * 2, ACCEPT_BACKOFF_SECONDS), MAX_ACCEPT_BACKOFF_SECONDS
                )
                self._logger.error(
                    "Socket accept failed",
                    extra={"event": "accept_error", "error_type": type(error).__name__},
                )
                time.sleep(backoff)
                continue
            backoff = 0.0

            if self._lifecycle.is_draining():
                try:
                    send_response(client_socket, draining_response(SECURITY_HEADERS))
                except OSError:
                    pass
                client_socket.close()
                continue

            self._start_worker(client_socket, client_address)

    def shutdown(self, grace_seconds: float) -> bool:
        """Stop accepting, then wait for in-flight requests within the grace period.

        Returns False when requests were still running at the deadline.
        """
        deadline = time.monotonic() + grace_seconds
        self._lifecycle.begin_draining()
        self._stopped.wait(max(0.0, deadline - time.monotonic()))
        self._logger.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "grace_seconds": grace_seconds,
                "remaining_workers": self._lifecycle.active_worker_count(),
            },
        )
        return self._lifecycle.wait_for_workers(max(0.0, deadline - time.monotonic()))
