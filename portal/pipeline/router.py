"""Request routing and pipeline composition."""

import logging
from dataclasses import dataclass
from typing import Optional

from portal.domain.correlation_id import CorrelationLoggerAdapter, child_logger
from portal.domain.http_types import HttpRequest
from portal.handlers.home_handler import handle_home_page
from portal.handlers.register_handler import handle_register_ip
from portal.handlers.system_handlers import handle_get_health
from portal.pipeline.middleware import Handler, access_log, recovery, write_error
from portal.upstream.client import ResourceClient


@dataclass
class _Route:
    pattern: str
    method: str
    segments: list[str]
    subtree: bool
    handler: Handler

    def match(self, path: str) -> Optional[dict[str, str]]:
        """Return captured wildcard values when ``path`` fits this route."""
        parts = path.split("/")[1:]
        if parts and parts[-1] == "" and not self.subtree:
            return None
        if self.subtree:
            if len(parts) < len(self.segments):
                return None
        elif len(parts) != len(self.segments):
            return None

        values = {}
        for segment, part in zip(self.segments, parts):
            if segment.startswith("{") and segment.endswith("}"):
                if not part:
                    return None
                values[segment[1:-1]] = part
            elif segment != part:
                return None
        return values

    def specificity(self) -> tuple[int, int]:
        return (0 if self.subtree else 1, len(self.segments))


class ServeMux:
    """Dispatches on ``"METHOD /path/{wildcard}"`` patterns.

    A pattern ending in ``/`` matches its whole subtree; the most specific
    matching pattern wins. GET patterns also answer HEAD.
    """

    def __init__(self, logger: Optional[CorrelationLoggerAdapter] = None) -> None:
        self._routes: list[_Route] = []
        self._logger = logger

    def handle(self, pattern: str, handler: Handler) -> None:
        method, _, path = pattern.partition(" ")
        if not path.startswith("/"):
            raise ValueError(f"invalid route pattern {pattern!r}")
        subtree = path.endswith("/")
        segments = path.strip("/").split("/") if path != "/" else []
        self._routes.append(_Route(pattern, method.upper(), segments, subtree, handler))
        self._routes.sort(key=_Route.specificity, reverse=True)

    def _allows(self, route: _Route, method: str) -> bool:
        return route.method == method or (route.method == "GET" and method == "HEAD")

    def __call__(self, writer, request: HttpRequest) -> None:
        allowed: list[str] = []
        for candidate in self._routes:
            values = candidate.match(request.path)
            if values is None:
                continue
            if not self._allows(candidate, request.method):
                allowed.append(candidate.method)
                continue
            if self._logger is not None and self._logger.logger.isEnabledFor(
                logging.DEBUG
            ):
                self._logger.debug(
                    "Route matched",
                    extra={"event": "route_matched", "route": candidate.pattern},
                )
            request.path_values = values
            candidate.handler(writer, request)
            return

        if allowed:
            writer.headers["Allow"] = ", ".join(sorted(set(allowed)))
            write_error(writer, "Method Not Allowed", 405)
            return

        if self._logger is not None:
            self._logger.info(
                "No matching route found",
                extra={
                    "event": "route_not_found",
                    "route": request.path,
                    "method": request.method,
                },
            )
        write_error(writer, "404 page not found", 404)


def route(
    logger: CorrelationLoggerAdapter, version: str, client: ResourceClient
) -> Handler:
    """Build the single handler serving every route, wrapped in the middleware chain."""
    mux = ServeMux(child_logger(logger, "pipeline.router"))
    mux.handle("GET /health", handle_get_health(version))
    mux.handle(
        "PUT /register/{id}",
        handle_register_ip(client, child_logger(logger, "handlers.register")),
    )
    mux.handle("GET /", handle_home_page(client))

    handler = access_log(mux, child_logger(logger, "pipeline.access"))
    handler = recovery(handler, child_logger(logger, "pipeline.recovery"))
    return handler
