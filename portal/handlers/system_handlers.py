"""Service health handler."""

import json
import time
from datetime import timedelta

from portal.domain.http_types import HttpRequest
from portal.pipeline.middleware import Handler, write_error


def encode_json(writer, status: int, value) -> None:
    """Write ``value`` as a JSON response body with the given status."""
    try:
        body = (json.dumps(value) + "\n").encode()
    except (TypeError, ValueError) as error:
        write_error(writer, f"encode json: {error}", 500)
        return
    writer.headers["Content-Type"] = "application/json"
    writer.set_status(status)
    writer.write(body)


def handle_get_health(version: str) -> Handler:
    """Report the service version and how long the handler has been up."""
    started = time.monotonic()

    def handler(writer, _request: HttpRequest) -> None:
        uptime = timedelta(seconds=time.monotonic() - started)
        encode_json(writer, 200, {"Version": version, "Uptime": str(uptime)})

    return handler
