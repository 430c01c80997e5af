"""In-process tests for start-up, the stop-trigger race and graceful shutdown."""

import signal
import socket
import threading
import time

import pytest
import requests

from portal.bootstrap.config import ServerConfig
from portal.lifecycle.orchestrator import Orchestrator, ServeError, ShutdownError
from portal.lifecycle.state import LifecycleState, ServerLifecycle


def _config(port=0, grace=5.0):
    return ServerConfig(port=port, host="127.0.0.1", shutdown_grace_seconds=grace)


def _start(orchestrator):
    """Run the orchestrator on a thread and capture its outcome."""
    outcome = {}

    def target():
        try:
            orchestrator.run()
        except Exception as error:  # pylint: disable=broad-except
            outcome["error"] = error

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while orchestrator.server.server_address is None:
        assert time.monotonic() < deadline, "listener never bound"
        time.sleep(0.01)
    return thread, outcome


def _gated_handler(entered, release):
    def handler(writer, _request):
        entered.set()
        release.wait(10)
        writer.write(b"done")

    return handler


def _get_in_background(orchestrator, path="/"):
    host, port = orchestrator.server.server_address
    result = {}

    def target():
        try:
            result["response"] = requests.get(f"http://{host}:{port}{path}", timeout=10)
        except requests.RequestException as error:
            result["error"] = error

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread, result


def test_in_flight_request_completes_before_clean_stop(portal_logger):
    """A stop request waits for the running request and then returns cleanly."""
    entered, release = threading.Event(), threading.Event()
    orchestrator = Orchestrator(_config(), _gated_handler(entered, release), portal_logger)
    run_thread, outcome = _start(orchestrator)
    client_thread, result = _get_in_background(orchestrator)

    assert entered.wait(5)
    orchestrator.interrupt(signal.SIGTERM)
    time.sleep(0.3)
    release.set()

    run_thread.join(10)
    client_thread.join(10)
    assert not run_thread.is_alive()
    assert "error" not in outcome
    assert result["response"].status_code == 200
    assert result["response"].text == "done"
    assert orchestrator.lifecycle.state is LifecycleState.STOPPED
    assert orchestrator.lifecycle.cancelled()


def test_grace_period_exceeded_reports_shutdown_error(portal_logger):
    """A request outliving the grace period makes run() fail."""
    entered, release = threading.Event(), threading.Event()
    orchestrator = Orchestrator(
        _config(grace=0.3), _gated_handler(entered, release), portal_logger
    )
    run_thread, outcome = _start(orchestrator)
    client_thread, _ = _get_in_background(orchestrator)

    try:
        assert entered.wait(5)
        orchestrator.interrupt(signal.SIGINT)
        run_thread.join(10)
    finally:
        release.set()
        client_thread.join(10)

    assert isinstance(outcome.get("error"), ShutdownError)
    assert str(outcome["error"]).startswith("server shutdown:")
    assert orchestrator.lifecycle.state is LifecycleState.FAILED
    assert orchestrator.lifecycle.cancelled()


def test_idle_keep_alive_connection_does_not_block_shutdown(portal_logger):
    """Connections waiting for their next request are closed while draining."""
    orchestrator = Orchestrator(
        _config(), _gated_handler(threading.Event(), threading.Event()), portal_logger
    )
    run_thread, outcome = _start(orchestrator)

    with socket.create_connection(orchestrator.server.server_address, timeout=5) as idle:
        time.sleep(0.2)
        started = time.monotonic()
        orchestrator.interrupt()
        run_thread.join(10)
        assert idle.recv(1) == b""

    assert "error" not in outcome
    assert time.monotonic() - started < 5


def test_bind_failure_is_reported_as_serve_error(portal_logger):
    """A listener that cannot bind ends run() with the serve error."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]

        orchestrator = Orchestrator(
            _config(port=port), lambda writer, request: None, portal_logger
        )
        with pytest.raises(ServeError, match="^serve: "):
            orchestrator.run()

    assert orchestrator.lifecycle.state is LifecycleState.FAILED


def test_first_trigger_wins(portal_logger):
    """Later triggers are ignored once one has been claimed."""
    lifecycle = ServerLifecycle(portal_logger)
    assert lifecycle.interrupt(signal.SIGTERM) is True
    assert lifecycle.report_fatal(OSError("late")) is False
    assert lifecycle.interrupt(signal.SIGINT) is False

    trigger = lifecycle.wait_for_trigger()
    assert trigger.signum == signal.SIGTERM
    assert not trigger.is_fatal


def test_fatal_trigger_beats_later_signal(portal_logger):
    lifecycle = ServerLifecycle(portal_logger)
    error = OSError("listener gone")
    assert lifecycle.report_fatal(error) is True
    assert lifecycle.interrupt(signal.SIGTERM) is False
    assert lifecycle.wait_for_trigger().error is error


def test_concurrent_triggers_have_a_single_winner(portal_logger):
    """Racing callers see exactly one successful claim."""
    lifecycle = ServerLifecycle(portal_logger)
    barrier = threading.Barrier(8)
    wins = []

    def contender(index):
        barrier.wait()
        if index % 2:
            wins.append(lifecycle.interrupt(signal.SIGTERM))
        else:
            wins.append(lifecycle.report_fatal(RuntimeError(str(index))))

    threads = [threading.Thread(target=contender, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert wins.count(True) == 1
