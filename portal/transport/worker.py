"""Per-connection worker: read requests, run the pipeline, write responses."""

import logging
import socket
import threading
import time
from typing import Callable, NamedTuple, Optional

from portal.bootstrap.config import SECURITY_HEADERS
from portal.domain.correlation_id import (
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)
from portal.domain.http_types import HttpRequest, HttpResponse, should_close
from portal.domain.response_builders import (
    bad_request_response,
    entity_too_large_response,
    header_timeout_response,
)
from portal.pipeline.io import RequestEntityTooLarge, receive_request, send_response
from portal.pipeline.writer import BufferedResponseWriter
from portal.transport.context import WorkerContext

IDLE_POLL_SECONDS = 0.5
RECV_CHUNK_BYTES = 4096
NS_PER_SECOND = 1_000_000_000


class _Rejection(NamedTuple):
    message: str
    event: str
    build: Callable[[dict[str, str]], HttpResponse]


# Checked in order; TimeoutError must precede its OSError siblings.
REJECTIONS = (
    (RequestEntityTooLarge, _Rejection(
        "Request size exceeded limit", "body_size_exceeded", entity_too_large_response
    )),
    (TimeoutError, _Rejection(
        "Request not received in time", "header_timeout", header_timeout_response
    )),
    (ValueError, _Rejection(
        "Malformed request received", "malformed_request", bad_request_response
    )),
)


def _recv_with_deadline(client_socket: socket.socket, deadline_ns: int) -> bytes:
    """Receive one chunk, raising TimeoutError once ``deadline_ns`` has passed."""
    remaining_ns = deadline_ns - time.monotonic_ns()
    if remaining_ns <= 0:
        raise TimeoutError("Request deadline exceeded")
    client_socket.settimeout(remaining_ns / NS_PER_SECOND)
    return client_socket.recv(RECV_CHUNK_BYTES)


class ConnectionReader:
    """Supplies request bytes to the parser for one keep-alive connection.

    Between requests the connection is idle: reads poll so a draining server
    can close it promptly, and an idle period longer than ``idle_timeout``
    ends the connection. Once the first byte of a request arrives the rest of
    it must arrive within ``read_header_timeout``.
    """

    def __init__(self, client_socket: socket.socket, context: WorkerContext) -> None:
        self._socket = client_socket
        self._lifecycle = context.lifecycle
        self._idle_timeout = context.config.socket_timeout
        self._read_header_timeout = context.config.read_header_timeout
        self._deadline_ns: Optional[int] = None

    def reset(self) -> None:
        """Mark the connection idle again, ready for the next request."""
        self._deadline_ns = None

    def __call__(self) -> bytes:
        if self._deadline_ns is not None:
            return _recv_with_deadline(self._socket, self._deadline_ns)

        idle_since = time.monotonic()
        while True:
            self._socket.settimeout(IDLE_POLL_SECONDS)
            try:
                chunk = self._socket.recv(RECV_CHUNK_BYTES)
            except socket.timeout:
                if self._lifecycle.is_draining():
                    return b""
                if time.monotonic() - idle_since >= self._idle_timeout:
                    return b""
                continue
            self._deadline_ns = time.monotonic_ns() + int(
                self._read_header_timeout * NS_PER_SECOND
            )
            return chunk


def _serve_request(
    request: HttpRequest, context: WorkerContext, client_socket: socket.socket
) -> bool:
    """Run the pipeline for one request, send its response, and say whether to hang up."""
    writer = BufferedResponseWriter(SECURITY_HEADERS, context.logger)
    context.handler(writer, request)

    close_connection = should_close(request.headers, context.lifecycle.is_draining())
    response = writer.to_response(close_connection)
    advertised = None
    if request.method == "HEAD":
        advertised = len(response.body)
        response.body = b""
    client_socket.settimeout(context.config.socket_timeout)
    send_response(client_socket, response, advertised)
    return close_connection


def _reject(
    error: Exception,
    client_socket: socket.socket,
    client: str,
    context: WorkerContext,
) -> None:
    """Answer a request that never reached the pipeline, then let the caller hang up."""
    for error_type, rejection in REJECTIONS:
        if isinstance(error, error_type):
            break
    else:
        raise error

    context.logger.warning(
        rejection.message, extra={"event": rejection.event, "client": client}
    )
    client_socket.settimeout(IDLE_POLL_SECONDS)
    send_response(client_socket, rejection.build(SECURITY_HEADERS))


def _release(context: WorkerContext, client_socket: socket.socket, client: str) -> None:
    context.lifecycle.cleanup_worker(threading.current_thread())
    try:
        client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    client_socket.close()
    context.logger.debug("Socket closed", extra={"event": "socket_closed", "client": client})
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Serve requests on one connection until it closes, errs or the server drains."""
    logger = context.logger
    client = f"{client_address[0]}:{client_address[1]}"
    reader = ConnectionReader(client_socket, context)
    pending = b""

    try:
        while True:
            set_correlation_id(generate_correlation_id())
            reader.reset()
            try:
                request, pending = receive_request(reader, pending, client, logger)
            except (RequestEntityTooLarge, TimeoutError, ValueError) as error:
                _reject(error, client_socket, client, context)
                return

            if request is None:
                if logger.logger.isEnabledFor(logging.DEBUG):
                    logger.debug(
                        "Client disconnected",
                        extra={"event": "client_disconnected", "client": client},
                    )
                return

            hang_up = _serve_request(request, context, client_socket)
            clear_correlation_id()
            if hang_up:
                return
    except OSError as error:
        logger.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        logger.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        _release(context, client_socket, client)
