"""Unit tests for the response introspector."""

from unittest.mock import MagicMock

import pytest

from portal.pipeline.recorder import ResponseRecorder


def test_recorder_starts_unwritten(fake_writer):
    """A fresh recorder reports no status and no bytes."""
    recorder = ResponseRecorder(fake_writer)
    assert recorder.status == 0
    assert recorder.num_bytes == 0


def test_first_status_is_retained(fake_writer):
    """Repeated set_status calls keep the first value for observability."""
    recorder = ResponseRecorder(fake_writer)
    recorder.set_status(201)
    recorder.set_status(500)
    recorder.set_status(404)
    assert recorder.status == 201


def test_every_status_call_is_forwarded(fake_writer):
    """The wrapped sink still sees each call unchanged."""
    recorder = ResponseRecorder(fake_writer)
    recorder.set_status(201)
    recorder.set_status(500)
    assert fake_writer.status_calls == [201, 500]


def test_write_accumulates_bytes_and_forwards(fake_writer):
    """Writes are counted and passed through byte for byte."""
    recorder = ResponseRecorder(fake_writer)
    assert recorder.write(b"hello ") == 6
    assert recorder.write(b"world") == 5
    assert recorder.num_bytes == 11
    assert fake_writer.body == b"hello world"


def test_write_without_status_records_implicit_ok(fake_writer):
    """A write before any status commits the implicit 200."""
    recorder = ResponseRecorder(fake_writer)
    recorder.write(b"x")
    recorder.set_status(500)
    assert recorder.status == 200


def test_headers_are_the_wrapped_sink_headers(fake_writer):
    """Header edits through the recorder land on the sink."""
    recorder = ResponseRecorder(fake_writer)
    recorder.headers["Content-Type"] = "text/plain"
    assert fake_writer.headers == {"Content-Type": "text/plain"}


def test_sink_errors_propagate_untouched():
    """Failures from the underlying sink are not swallowed or counted."""
    sink = MagicMock()
    sink.write.side_effect = BrokenPipeError("peer went away")
    recorder = ResponseRecorder(sink)
    with pytest.raises(BrokenPipeError, match="peer went away"):
        recorder.write(b"data")
    assert recorder.num_bytes == 0
    assert recorder.status == 0


def test_recorders_stack(fake_writer):
    """An outer recorder observes what an inner recorder forwards."""
    outer = ResponseRecorder(fake_writer)
    inner = ResponseRecorder(outer)
    inner.set_status(202)
    inner.write(b"abc")
    assert (outer.status, outer.num_bytes) == (202, 3)
    assert fake_writer.status_calls == [202]
