"""Response sink handed to the pipeline for each request."""

from typing import Optional

from portal.domain.correlation_id import CorrelationLoggerAdapter
from portal.domain.http_types import HttpResponse, status_line


class BufferedResponseWriter:
    """Collects the status, headers and body a handler produces for one request.

    The first ``set_status`` (or the implicit 200 of a first ``write``) commits
    the status and header set; later status changes are ignored and header
    edits no longer reach the wire.
    """

    def __init__(
        self,
        default_headers: Optional[dict[str, str]] = None,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._headers: dict[str, str] = dict(default_headers or {})
        self._committed_headers: Optional[dict[str, str]] = None
        self._status = 0
        self._chunks: list[bytes] = []
        self._logger = logger

    @property
    def headers(self) -> dict[str, str]:
        if self._committed_headers is not None:
            return dict(self._committed_headers)
        return self._headers

    @property
    def status(self) -> int:
        return self._status

    def set_status(self, code: int) -> None:
        if self._status:
            if self._logger is not None:
                self._logger.warning(
                    "superfluous set_status call",
                    extra={"event": "superfluous_status", "status": code},
                )
            return
        if code < 100 or code > 999:
            raise ValueError(f"invalid status code {code}")
        self._status = code
        self._committed_headers = dict(self._headers)

    def write(self, data: bytes) -> int:
        if not self._status:
            self.set_status(200)
        self._chunks.append(bytes(data))
        return len(data)

    def to_response(self, close_connection: bool) -> HttpResponse:
        """Freeze what the handler produced into a wire response."""
        if not self._status:
            self.set_status(200)
        body = b"".join(self._chunks)
        headers = dict(self._committed_headers or {})
        if body and not any(name.lower() == "content-type" for name in headers):
            headers["Content-Type"] = "text/plain; charset=utf-8"
        return HttpResponse(status_line(self._status), headers, body, close_connection)
