"""Server start-up, the stop-trigger race and bounded graceful shutdown."""

import signal
import threading
from typing import Optional

from portal.bootstrap.config import ServerConfig
from portal.domain.correlation_id import CorrelationLoggerAdapter, child_logger
from portal.lifecycle.state import LifecycleState, ServerLifecycle
from portal.pipeline.middleware import Handler
from portal.transport.accept_loop import HttpServer

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServeError(RuntimeError):
    """The listener failed while serving."""


class ShutdownError(RuntimeError):
    """In-flight requests outlived the shutdown grace period."""


class Orchestrator:
    """Runs the server until a fatal listener error or a stop signal.

    Whichever of the two happens first decides the outcome; the other is
    ignored from then on.
    """

    def __init__(
        self,
        config: ServerConfig,
        handler: Handler,
        logger: CorrelationLoggerAdapter,
        version: str = "",
        lifecycle: Optional[ServerLifecycle] = None,
    ) -> None:
        self._config = config
        self._version = version
        self._logger = child_logger(logger, "lifecycle")
        self.lifecycle = lifecycle or ServerLifecycle(self._logger)
        self.server = HttpServer(config, handler, self.lifecycle, logger)

    def interrupt(self, signum: int = signal.SIGTERM) -> None:
        """Request a graceful stop; only the first stop trigger is honoured."""
        self.lifecycle.interrupt(signum)

    def _serve(self) -> None:
        try:
            self.server.serve_forever()
        except Exception as error:  # pylint: disable=broad-except
            self.lifecycle.report_fatal(error)

    def run(self) -> None:
        """Serve until stopped.

        Raises ServeError when the listener fails and ShutdownError when the
        grace period runs out with requests still in flight.
        """
        serve_thread = threading.Thread(
            target=self._serve, name="portal-serve", daemon=True
        )
        self._logger.info(
            "server started",
            extra={
                "event": "server_started",
                "port": self._config.port,
                "version": self._version,
            },
        )
        serve_thread.start()
        self.lifecycle.transition(LifecycleState.SERVING)

        trigger = self.lifecycle.wait_for_trigger()
        if trigger.is_fatal:
            self.lifecycle.transition(LifecycleState.FAILED)
            raise ServeError(f"serve: {trigger.error}") from trigger.error

        self._logger.info(
            "shutting down server",
            extra={"event": "shutdown_requested", "signal": trigger.signum},
        )
        self.lifecycle.transition(LifecycleState.DRAINING)
        drained = self.server.shutdown(self._config.shutdown_grace_seconds)
        self.lifecycle.cancel()

        if not drained:
            self.lifecycle.transition(LifecycleState.FAILED)
            raise ShutdownError(
                "server shutdown: grace period of "
                f"{self._config.shutdown_grace_seconds:g}s exceeded with "
                f"{self.lifecycle.active_worker_count()} request(s) in flight"
            )
        self.lifecycle.transition(LifecycleState.STOPPED)
        self._logger.info("Server shutdown complete", extra={"event": "server_stopped"})


def install_signal_handlers(orchestrator: Orchestrator) -> None:
    """Route SIGINT and SIGTERM to a graceful stop. Main thread only."""

    def shutdown_handler(signum: int, _frame) -> None:
        orchestrator.interrupt(signum)

    for signum in SHUTDOWN_SIGNALS:
        signal.signal(signum, shutdown_handler)
