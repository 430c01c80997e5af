"""Self-registration of the caller's address on a resource."""

import re
from typing import Optional

from portal.bootstrap.config import REAL_IP_HEADER
from portal.domain.correlation_id import CorrelationLoggerAdapter
from portal.domain.http_types import HttpRequest
from portal.pipeline.middleware import Handler, write_error
from portal.upstream.client import ResourceClient
from portal.upstream.errors import UpstreamError
from portal.upstream.models import AccessRule

RULE_ACTION = "ACCEPT"
RULE_MATCH = "IP"
RULE_PRIORITY = 10

# Optional sign and ASCII digits only; int() alone also takes "1_000" and " 7".
RESOURCE_ID_PATTERN = re.compile(r"[+-]?[0-9]+")


def build_ip_rule(address: str) -> AccessRule:
    """Return the ACCEPT rule that lets ``address`` through."""
    return AccessRule(
        action=RULE_ACTION,
        match=RULE_MATCH,
        value=address,
        priority=RULE_PRIORITY,
        enabled=True,
    )


def parse_resource_id(raw_id: str) -> int:
    if not RESOURCE_ID_PATTERN.fullmatch(raw_id):
        raise ValueError(f"invalid resource id {raw_id!r}")
    return int(raw_id)


def handle_register_ip(
    client: ResourceClient, logger: Optional[CorrelationLoggerAdapter] = None
) -> Handler:
    """Create an ACCEPT rule for the caller's forwarded address on resource ``{id}``."""

    def handler(writer, request: HttpRequest) -> None:
        rule = build_ip_rule(request.headers.get(REAL_IP_HEADER, ""))

        raw_id = request.path_value("id")
        try:
            resource_id = parse_resource_id(raw_id)
        except ValueError as error:
            write_error(writer, str(error), 500)
            return

        try:
            client.create_rule(rule, resource_id)
        except UpstreamError as error:
            if logger is not None:
                logger.warning(
                    "Rule registration failed",
                    extra={
                        "event": "register_failed",
                        "resource_id": resource_id,
                        "error_type": type(error).__name__,
                        "error": str(error),
                    },
                )
            write_error(writer, str(error), 500)
            return

        if logger is not None:
            logger.info(
                "Address registered",
                extra={"event": "address_registered", "resource_id": resource_id},
            )
        writer.write(b"Success\n")

    return handler
