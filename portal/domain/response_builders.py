"""Canned replies sent by the transport when a request never reaches the pipeline.

Every one of them ends the connection.
"""

from http import HTTPStatus

from portal.domain.http_types import HttpResponse, status_line


def _closing_reply(
    status: HTTPStatus, security_headers: dict[str, str], body: bytes = b""
) -> HttpResponse:
    headers = dict(security_headers)
    if body:
        headers["Content-Type"] = "text/plain; charset=utf-8"
    return HttpResponse(status_line(status), headers, body, True)


def bad_request_response(security_headers: dict[str, str]) -> HttpResponse:
    return _closing_reply(HTTPStatus.BAD_REQUEST, security_headers)


def entity_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    return _closing_reply(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, security_headers)


def header_timeout_response(security_headers: dict[str, str]) -> HttpResponse:
    """Reply to a client that did not finish its request within the read deadline."""
    return _closing_reply(HTTPStatus.REQUEST_TIMEOUT, security_headers)


def draining_response(security_headers: dict[str, str]) -> HttpResponse:
    """Reply to a connection accepted after shutdown began."""
    return _closing_reply(HTTPStatus.SERVICE_UNAVAILABLE, security_headers, b"draining")
