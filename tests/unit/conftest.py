"""Shared fixtures for unit tests."""

import logging

import pytest

from portal.domain.correlation_id import LOGGER_NAME, CorrelationLoggerAdapter


class FakeWriter:
    """Response sink double that records every call it receives."""

    def __init__(self):
        self.headers = {}
        self.status_calls = []
        self.body = b""

    def set_status(self, code):
        self.status_calls.append(code)

    def write(self, data):
        self.body += data
        return len(data)


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure project logs propagate to root so caplog can catch them."""
    logger = logging.getLogger(LOGGER_NAME)
    old_propagate = logger.propagate
    old_level = logger.level
    old_handlers = list(logger.handlers)
    logger.propagate = True
    logger.setLevel(logging.DEBUG)
    yield
    for handler in logger.handlers:
        if handler not in old_handlers:
            handler.close()
    logger.handlers[:] = old_handlers
    logger.propagate = old_propagate
    logger.setLevel(old_level)


@pytest.fixture(name="portal_logger")
def portal_logger_fixture():
    """Provide an explicitly constructed project logger adapter."""
    return CorrelationLoggerAdapter(logging.getLogger(f"{LOGGER_NAME}.test"), {})


@pytest.fixture(name="fake_writer")
def fake_writer_fixture():
    """Provide a recording response sink."""
    return FakeWriter()
