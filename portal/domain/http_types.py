"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from http import HTTPStatus


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes
    query: str = ""
    remote_addr: str = ""
    path_values: dict[str, str] = field(default_factory=dict)

    def path_value(self, name: str) -> str:
        """Return the wildcard segment captured by the matched route pattern."""
        return self.path_values.get(name, "")


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool


def status_line(status: int) -> str:
    """Build the HTTP/1.1 status line for a numeric status code."""
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = ""
    return f"HTTP/1.1 {status} {reason}".rstrip()


def should_close(headers: dict[str, str], draining: bool = False) -> bool:
    """Determine whether the connection should be closed after responding."""
    return draining or headers.get("connection", "").lower() == "close"
