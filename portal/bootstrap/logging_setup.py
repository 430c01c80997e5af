"""Structured logging for the portal: one JSON object per line, secrets masked."""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

from portal.domain.correlation_id import LOGGER_NAME, CorrelationLoggerAdapter

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROTATE_BYTES = 10 * 1024 * 1024
ROTATE_KEEP = 5
REDACTED = "[REDACTED]"

# Any match masks the whole value.
SECRET_MARKERS = (
    re.compile(r"(?i)(authorization|bearer|token|password|secret|api[_-]?key)"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{32,}={0,2}\b"),
)

# Record attributes copied into the JSON document when present.
STRUCTURED_FIELDS = (
    "latency_ms",
    "method",
    "path",
    "query",
    "ip",
    "client",
    "status",
    "bytes",
    "error",
    "error_type",
    "stack",
    "route",
    "resource_id",
    "upstream_status",
    "duration_ms",
    "host",
    "port",
    "version",
    "signal",
    "state",
    "previous_state",
    "grace_seconds",
    "remaining_workers",
    "destination",
    "use_json",
)

# Tracebacks are kept intact; they routinely name the credential fields.
UNREDACTED_FIELDS = frozenset({"stack"})


def redact_sensitive(value: Optional[str]) -> Optional[str]:
    """Mask ``value`` entirely when it looks like it carries a credential."""
    if value and any(marker.search(value) for marker in SECRET_MARKERS):
        return REDACTED
    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Give records logged outside the adapter a placeholder correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.__dict__.setdefault("correlation_id", "-")
        return True


class JsonFormatter(logging.Formatter):
    """Render records as sorted-key JSON, masking credential-like strings."""

    def _field_value(self, name: str, value: Any) -> Any:
        if isinstance(value, str) and name not in UNREDACTED_FIELDS:
            return redact_sensitive(value)
        return value

    def format(self, record: logging.LogRecord) -> str:
        document = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event is not None:
            document["event"] = event

        document.update(
            (name, self._field_value(name, record.__dict__[name]))
            for name in STRUCTURED_FIELDS
            if name in record.__dict__
        )

        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def _open_destination(
    destination: Optional[str], stream: Optional[TextIO]
) -> logging.Handler:
    """``None`` or ``"stdout"`` log to the stream; anything else is a rotating file."""
    if destination is None or destination.lower() == "stdout":
        return logging.StreamHandler(stream if stream is not None else sys.stdout)

    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=ROTATE_BYTES, backupCount=ROTATE_KEEP)


def _build_handler(
    destination: Optional[str],
    level: int,
    use_json: bool = True,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    handler = _open_destination(destination, stream)
    handler.setLevel(level)
    handler.setFormatter(
        JsonFormatter(datefmt=DATE_FORMAT)
        if use_json
        else logging.Formatter(TEXT_FORMAT, DATE_FORMAT)
    )
    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO",
    destination: Optional[str] = None,
    use_json: bool = True,
    stream: Optional[TextIO] = None,
) -> CorrelationLoggerAdapter:
    """Install the single project handler and return the root project adapter.

    Previously installed handlers are closed, so calling this again replaces
    the configuration rather than duplicating output.
    """
    numeric_level = _resolve_level(level)
    project_logger = logging.getLogger(LOGGER_NAME)
    project_logger.setLevel(numeric_level)
    project_logger.propagate = False

    while project_logger.handlers:
        stale = project_logger.handlers.pop()
        stale.close()
    project_logger.addHandler(
        _build_handler(destination, numeric_level, use_json, stream)
    )

    adapter = CorrelationLoggerAdapter(project_logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "use_json": use_json,
        },
    )
    return adapter
