"""Cross-cutting request middleware: access logging and fault recovery."""

import time
import traceback
from typing import Any, Callable

from portal.bootstrap.config import REAL_IP_HEADER
from portal.domain.correlation_id import CorrelationLoggerAdapter
from portal.domain.http_types import HttpRequest
from portal.pipeline.recorder import ResponseRecorder

Handler = Callable[[Any, HttpRequest], None]


class AbortHandler(Exception):
    """Raised by a handler to abandon the current response without an error log."""


CLIENT_ABORT_ERRORS = (AbortHandler, BrokenPipeError, ConnectionResetError)


def write_error(writer, message: str, status: int) -> None:
    """Reply with a plain-text error body, like net/http's Error helper."""
    writer.headers["Content-Type"] = "text/plain; charset=utf-8"
    writer.headers["X-Content-Type-Options"] = "nosniff"
    writer.set_status(status)
    writer.write(f"{message}\n".encode())


def access_log(next_handler: Handler, logger: CorrelationLoggerAdapter) -> Handler:
    """Log latency, method, path, query, caller address, status and bytes sent.

    Exactly one record is emitted per request, including when the inner
    handler raises; the exception then continues to the next stage out.
    """

    def handler(writer, request: HttpRequest) -> None:
        start = time.perf_counter()
        recorder = ResponseRecorder(writer)
        try:
            next_handler(recorder, request)
        finally:
            logger.info(
                "accessed",
                extra={
                    "event": "accessed",
                    "latency_ms": round((time.perf_counter() - start) * 1000, 3),
                    "method": request.method,
                    "path": request.path,
                    "query": request.query,
                    "ip": request.headers.get(REAL_IP_HEADER, ""),
                    "status": recorder.status,
                    "bytes": recorder.num_bytes,
                },
            )

    return handler


def recovery(next_handler: Handler, logger: CorrelationLoggerAdapter) -> Handler:
    """Turn any fault raised by the inner chain into a logged 500.

    Must be the outermost middleware so it also covers the access log stage.
    When the inner chain already sent a status nothing more is written.
    """

    def handler(writer, request: HttpRequest) -> None:
        recorder = ResponseRecorder(writer)
        try:
            next_handler(recorder, request)
        except CLIENT_ABORT_ERRORS as error:
            logger.debug(
                "Request aborted",
                extra={"event": "request_aborted", "error_type": type(error).__name__},
            )
        except Exception as error:  # pylint: disable=broad-except
            logger.error(
                "panic!",
                extra={
                    "event": "handler_fault",
                    "error": str(error),
                    "error_type": type(error).__name__,
                    "stack": traceback.format_exc(),
                    "method": request.method,
                    "path": request.path,
                    "query": request.query,
                    "ip": request.remote_addr,
                },
            )

            if recorder.status > 0:
                # the status line is already committed
                return

            write_error(writer, str(error), 500)

    return handler
