"""Wire-level request parsing and response framing for HTTP/1.1."""

import socket
import urllib.parse
from typing import Callable, Optional, Tuple

from portal.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES
from portal.domain.correlation_id import (
    CorrelationLoggerAdapter,
    get_correlation_id,
    set_correlation_id,
)
from portal.domain.http_types import HttpRequest, HttpResponse

Receiver = Callable[[], bytes]

HEADER_ENCODING = "iso-8859-1"


class RequestEntityTooLarge(Exception):
    """The request head or declared body exceeds ``MAX_BODY_BYTES``."""


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Map header lines to a dict keyed by lowercased name; lines without ':' are dropped."""
    return {
        name.strip().lower(): value.strip()
        for name, sep, value in (line.partition(":") for line in lines)
        if sep
    }


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Split ``METHOD target VERSION`` into method, percent-decoded path and raw query."""
    parts = request_line.split(" ", 2)
    if len(parts) != 3:
        raise ValueError("Invalid request line")
    method, target, _version = parts

    split_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(split_target.path)
    if not path.startswith("/"):
        raise ValueError("Invalid request target")
    return method, path, split_target.query


def determine_content_length(headers: dict[str, str]) -> int:
    raw = headers.get("content-length")
    if raw is None:
        return 0
    try:
        length = int(raw)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if length < 0:
        raise ValueError("Negative Content-Length")
    if length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return length


def _fill(
    receive: Receiver,
    buffer: bytes,
    done: Callable[[bytes], bool],
    limit: Optional[int] = None,
) -> Optional[bytes]:
    """Append chunks to ``buffer`` until ``done`` holds; None when the peer hangs up first."""
    while not done(buffer):
        chunk = receive()
        if not chunk:
            return None
        buffer += chunk
        if limit is not None and len(buffer) > limit:
            raise RequestEntityTooLarge
    return buffer


def receive_request(
    receive: Receiver,
    buffer: bytes,
    remote_addr: str = "",
    logger: Optional[CorrelationLoggerAdapter] = None,
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read one request, starting from bytes left over by the previous one.

    ``receive`` returns the next chunk from the connection and ``b""`` once
    the peer has closed it. Returns ``(None, b"")`` when the connection ends
    before a full request arrived, otherwise the request and any pipelined
    bytes that follow it.
    """
    buffer = _fill(
        receive, buffer, lambda data: HEADER_DELIMITER in data, MAX_BODY_BYTES
    )
    if buffer is None:
        return None, b""

    head, rest = buffer.split(HEADER_DELIMITER, 1)
    request_line, *header_lines = head.decode(HEADER_ENCODING).split("\r\n")
    method, path, query = parse_request_line(request_line)
    headers = parse_headers(header_lines)

    if headers.get("x-request-id"):
        set_correlation_id(headers["x-request-id"])

    length = determine_content_length(headers)
    rest = _fill(receive, rest, lambda data: len(data) >= length)
    if rest is None:
        return None, b""

    if logger is not None:
        logger.debug("Parsed request", extra={"method": method, "path": path})
    request = HttpRequest(
        method, path, headers, rest[:length], query=query, remote_addr=remote_addr
    )
    return request, rest[length:]


def send_response(
    client_socket: socket.socket,
    response: HttpResponse,
    content_length: Optional[int] = None,
) -> None:
    """Frame ``response`` with Content-Length and the request id, then send it.

    ``content_length`` overrides the advertised length; a HEAD reply uses it to
    announce the body it leaves out.
    """
    headers = dict(response.headers)
    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id
    headers["Content-Length"] = str(
        len(response.body) if content_length is None else content_length
    )
    if response.close_connection:
        headers["Connection"] = "close"

    head = "\r\n".join(
        [response.status_line, *(f"{name}: {value}" for name, value in headers.items())]
    )
    client_socket.sendall(head.encode(HEADER_ENCODING) + HEADER_DELIMITER + response.body)
