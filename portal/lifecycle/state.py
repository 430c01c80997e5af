"""Process lifecycle: state, the stop-trigger race and in-flight worker tracking."""

import enum
import threading
import time
from dataclasses import dataclass
from typing import Optional

from portal.domain.correlation_id import CorrelationLoggerAdapter

TRIGGER_POLL_SECONDS = 0.5
WORKER_POLL_SECONDS = 0.1


class LifecycleState(enum.Enum):
    """Phases of the server process."""

    STARTING = "starting"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class Trigger:
    """The event that ended the serving phase: a fatal error or a signal."""

    error: Optional[BaseException] = None
    signum: Optional[int] = None

    @property
    def is_fatal(self) -> bool:
        return self.error is not None


class ServerLifecycle:
    """Tracks lifecycle state, the shutdown trigger race and worker threads."""

    def __init__(self, logger: CorrelationLoggerAdapter) -> None:
        self._logger = logger
        self._workers_changed = threading.Condition()
        self._state = LifecycleState.STARTING
        self._stop_event = threading.Event()
        self._draining_event = threading.Event()
        self._cancelled = threading.Event()
        self._workers: set[threading.Thread] = set()
        # Claimed once and never released: the first trigger wins.
        self._trigger_claim = threading.Lock()
        self._triggered = threading.Event()
        self._trigger: Optional[Trigger] = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    def transition(self, state: LifecycleState) -> None:
        """Move to ``state`` and log the change."""
        previous, self._state = self._state, state
        self._logger.info(
            "Lifecycle state changed",
            extra={
                "event": "lifecycle_transition",
                "previous_state": previous.value,
                "state": state.value,
            },
        )

    def _claim(self, trigger: Trigger) -> bool:
        if not self._trigger_claim.acquire(blocking=False):
            return False
        self._trigger = trigger
        self._triggered.set()
        return True

    def report_fatal(self, error: BaseException) -> bool:
        """Offer a fatal serve error; returns False if another trigger already won."""
        return self._claim(Trigger(error=error))

    def interrupt(self, signum: int) -> bool:
        """Offer an external stop request; safe to call from a signal handler."""
        return self._claim(Trigger(signum=signum))

    def wait_for_trigger(self) -> Trigger:
        """Block until the first trigger has been claimed and return it."""
        while not self._triggered.wait(TRIGGER_POLL_SECONDS):
            pass
        return self._trigger

    def should_stop(self) -> bool:
        """True once the accept loop must stop taking connections."""
        return self._stop_event.is_set()

    def is_draining(self) -> bool:
        """True once in-flight requests are being drained; keep-alive ends after them."""
        return self._draining_event.is_set()

    def begin_draining(self) -> None:
        """Stop accepting and close connections after their current request."""
        self._draining_event.set()
        self._stop_event.set()
        self._logger.info("Beginning graceful shutdown", extra={"event": "draining"})

    def cancel(self) -> None:
        """Release everything waiting on the process-wide cancellation token."""
        self._cancelled.set()

    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def register_worker(self, thread: threading.Thread) -> None:
        """Track ``thread``; call before ``start()`` so a drain cannot miss it."""
        with self._workers_changed:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Stop tracking ``thread``; unknown threads are ignored."""
        with self._workers_changed:
            self._workers.discard(thread)
            self._workers_changed.notify_all()

    def active_worker_count(self) -> int:
        with self._workers_changed:
            return len(self._workers)

    def wait_for_workers(self, timeout: float) -> bool:
        """Block until every tracked worker has finished or ``timeout`` elapses.

        Threads that died without deregistering count as finished. Returns
        False, after logging how many are left, when the deadline wins.
        """
        deadline = time.monotonic() + timeout
        with self._workers_changed:
            while True:
                self._workers = {worker for worker in self._workers if worker.is_alive()}
                if not self._workers:
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    stragglers = len(self._workers)
                    break
                self._workers_changed.wait(min(WORKER_POLL_SECONDS, remaining))

        self._logger.warning(
            "Shutdown timeout exceeded",
            extra={"event": "shutdown_timeout", "remaining_workers": stragglers},
        )
        return False
