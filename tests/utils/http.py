"""Raw-socket HTTP helpers for driving the portal process in integration tests."""

from __future__ import annotations

import os
import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

CRLF = "\r\n"
BLANK_LINE = b"\r\n\r\n"


@dataclass(slots=True)
class RawHttpResponse:
    status_line: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def status_code(self) -> int:
        return int(self.status_line.split()[1])


def reserve_port(host: str = "127.0.0.1") -> int:
    """Ask the kernel for an ephemeral port and release it immediately."""
    probe = socket.socket()
    try:
        probe.bind((host, 0))
        return probe.getsockname()[1]
    finally:
        probe.close()


def wait_for_port(host: str, port: int, timeout: float = 5.0) -> None:
    """Poll until the portal accepts connections on ``host:port``."""
    give_up_at = time.monotonic() + timeout
    while True:
        try:
            socket.create_connection((host, port), timeout=0.1).close()
            return
        except OSError:
            if time.monotonic() >= give_up_at:
                raise RuntimeError(
                    f"Portal did not start on {host}:{port} within {timeout}s"
                ) from None
            time.sleep(0.05)


def build_request(
    method: str,
    path: str,
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
) -> bytes:
    """Serialize an HTTP/1.1 request with a Host header and optional body."""
    fields = {"Host": "localhost", **(headers or {})}
    if body:
        fields["Content-Length"] = str(len(body))
    head = CRLF.join(
        [f"{method} {path} HTTP/1.1", *(f"{k}: {v}" for k, v in fields.items())]
    )
    return head.encode("ascii") + BLANK_LINE + body


def _recv_until(
    sock: socket.socket, data: bytes, satisfied: Callable[[bytes], bool], what: str
) -> bytes:
    while not satisfied(data):
        more = sock.recv(4096)
        if not more:
            raise RuntimeError(f"Connection closed before {what}")
        data += more
    return data


def read_http_response(sock: socket.socket) -> RawHttpResponse:
    """Read exactly one Content-Length framed response; header names are lowercased."""
    data = _recv_until(sock, b"", lambda d: BLANK_LINE in d, "headers were received")
    head, body = data.split(BLANK_LINE, 1)
    status_line, *lines = head.decode("iso-8859-1").split(CRLF)
    response = RawHttpResponse(status_line)
    for line in lines:
        name, sep, value = line.partition(":")
        if sep:
            response.headers[name.strip().lower()] = value.strip()

    length = int(response.headers.get("content-length", "0"))
    body = _recv_until(sock, body, lambda d: len(d) >= length, "body completed")
    response.body = body[:length]
    return response


def send_signal_to_process(pid: int, sig: int) -> None:
    os.kill(pid, sig)
