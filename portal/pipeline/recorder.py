"""Response introspection for observability middleware."""


class ResponseRecorder:
    """Wraps a response writer and records the status and bytes written.

    Every call is forwarded to the wrapped writer unchanged. Only the first
    status is recorded, since only the first status line reaches the client.
    A write before any status records the implicit 200 the writer commits.
    """

    def __init__(self, writer) -> None:
        self._writer = writer
        self.status = 0
        self.num_bytes = 0

    @property
    def headers(self) -> dict[str, str]:
        return self._writer.headers

    def set_status(self, code: int) -> None:
        self._writer.set_status(code)
        if not self.status:
            self.status = code

    def write(self, data: bytes) -> int:
        written = self._writer.write(data)
        if not self.status:
            self.status = 200
        self.num_bytes += len(data)
        return written
