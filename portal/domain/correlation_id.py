"""Per-request correlation ids and the logger adapter that stamps them on records."""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

LOGGER_NAME = "selfservice_portal"

_current_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "portal_correlation_id", default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _current_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Bind ``correlation_id`` to the calling thread's current request."""
    _current_id.set(correlation_id)


def clear_correlation_id() -> None:
    _current_id.set(None)


def component_name(logger_name: str) -> str:
    """Strip the project prefix: ``selfservice_portal.transport.worker`` -> ``transport.worker``."""
    prefix = f"{LOGGER_NAME}."
    return logger_name[len(prefix) :] if logger_name.startswith(prefix) else logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Adds ``correlation_id`` and ``component`` to every record's extras.

    The caller's ``extra`` mapping is copied, never mutated.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = get_correlation_id() or "-"
        extra["component"] = component_name(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs


def child_logger(
    parent: CorrelationLoggerAdapter, name: str
) -> CorrelationLoggerAdapter:
    """Derive a component logger from an explicitly configured parent adapter."""
    return CorrelationLoggerAdapter(parent.logger.getChild(name), {})
