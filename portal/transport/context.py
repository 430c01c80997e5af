"""Context object shared across worker threads."""

from dataclasses import dataclass

from portal.bootstrap.config import ServerConfig
from portal.domain.correlation_id import CorrelationLoggerAdapter
from portal.lifecycle.state import ServerLifecycle
from portal.pipeline.middleware import Handler


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    handler: Handler
    lifecycle: ServerLifecycle
    config: ServerConfig
    logger: CorrelationLoggerAdapter
