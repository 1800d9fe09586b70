from __future__ import annotations

import threading
import time

import pytest

from mcp_manager.correlator import RequestCorrelator
from mcp_manager.errors import (
    MalformedMessage,
    RequestTimedOut,
    ServerReportedError,
    ServerStopped,
)
from mcp_manager.transport import Transport


class RecordingTransport(Transport):
    """Captures sent messages; optionally answers them from a callback."""

    def __init__(self, responder=None):
        self.sent: list[dict] = []
        self.responder = responder
        self.sent_event = threading.Event()

    def send(self, message):
        self.sent.append(message)
        self.sent_event.set()
        if self.responder is not None:
            self.responder(message)

    def start(self, on_message, on_malformed=None, on_close=None):
        pass

    def close(self):
        pass

    def is_alive(self):
        return True


def _answer_later(correlator, delay=0.05, **fields):
    def respond(message):
        def deliver():
            time.sleep(delay)
            correlator.dispatch({"jsonrpc": "2.0", "id": message["id"], **fields})
        threading.Thread(target=deliver, daemon=True).start()
    return respond


def test_call_returns_matching_result() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport)
    transport.responder = _answer_later(correlator, result={"ok": True})

    assert correlator.call("ping") == {"ok": True}
    assert transport.sent[0] == {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {}}
    assert correlator.pending_count == 0


def test_ids_increase_per_call() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport)
    transport.responder = _answer_later(correlator, delay=0, result=None)

    correlator.call("a")
    correlator.call("b")
    correlator.call("c")
    assert [m["id"] for m in transport.sent] == [1, 2, 3]


def test_concurrent_calls_are_matched_by_id() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport)
    results: dict[str, object] = {}

    def caller(tag):
        results[tag] = correlator.call("echo", {"tag": tag})

    threads = [threading.Thread(target=caller, args=(tag,)) for tag in ("x", "y", "z")]
    for t in threads:
        t.start()
    deadline = time.monotonic() + 5
    while len(transport.sent) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)

    # answer in reverse order of submission
    for message in reversed(transport.sent):
        correlator.dispatch({"id": message["id"], "result": message["params"]["tag"]})
    for t in threads:
        t.join(5)

    assert results == {"x": "x", "y": "y", "z": "z"}


def test_error_response_raises_server_reported_error() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport)
    payload = {"code": -32601, "message": "Unknown method"}
    transport.responder = _answer_later(correlator, error=payload)

    with pytest.raises(ServerReportedError) as info:
        correlator.call("nope")
    assert info.value.payload == payload
    assert info.value.code == -32601
    assert info.value.message == "Unknown method"


def test_null_error_next_to_result_is_a_success() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport)
    transport.responder = _answer_later(correlator, result={"ok": 1}, error=None)

    assert correlator.call("x") == {"ok": 1}
    assert correlator.pending_count == 0


def test_timeout_removes_pending_entry() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport, default_timeout=0.2)

    started = time.monotonic()
    with pytest.raises(RequestTimedOut) as info:
        correlator.call("slow")
    elapsed = time.monotonic() - started

    assert 0.15 <= elapsed < 2
    assert info.value.method == "slow"
    assert correlator.pending_count == 0
    assert not correlator.closed


def test_late_and_duplicate_responses_are_ignored() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport)

    with pytest.raises(RequestTimedOut):
        correlator.call("slow", timeout=0.05)
    # late answer for the timed-out request
    correlator.dispatch({"id": 1, "result": "late"})

    transport.responder = _answer_later(correlator, delay=0, result="first")
    assert correlator.call("fast") == "first"
    # duplicate for the already-resolved request
    correlator.dispatch({"id": 2, "result": "second"})
    assert correlator.pending_count == 0


def test_unknown_ids_and_notifications_are_dropped() -> None:
    correlator = RequestCorrelator("srv", RecordingTransport())
    correlator.dispatch({"jsonrpc": "2.0", "method": "notifications/tools/list_changed"})
    correlator.dispatch({"jsonrpc": "2.0", "id": 99, "result": {}})
    correlator.dispatch({"jsonrpc": "2.0", "id": None, "error": {"code": -32700}})
    correlator.dispatch({"jsonrpc": "2.0", "id": [1], "result": {}})
    assert correlator.pending_count == 0


def test_close_fails_pending_immediately() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport, default_timeout=30)
    errors: list[BaseException] = []

    def caller():
        try:
            correlator.call("hang")
        except ServerStopped as e:
            errors.append(e)

    thread = threading.Thread(target=caller)
    started = time.monotonic()
    thread.start()
    assert transport.sent_event.wait(5)
    correlator.close("server stopped")
    thread.join(5)

    assert time.monotonic() - started < 5
    assert len(errors) == 1
    assert errors[0].server == "srv"

    with pytest.raises(ServerStopped):
        correlator.call("again")
    with pytest.raises(ServerStopped):
        correlator.notify("notifications/initialized")


def test_malformed_reports_do_not_resolve_requests() -> None:
    transport = RecordingTransport()
    correlator = RequestCorrelator("srv", transport)

    def respond(message):
        correlator.report_malformed(MalformedMessage(b"{oops"))
        _answer_later(correlator, delay=0, result="fine")(message)

    transport.responder = respond
    assert correlator.call("x") == "fine"
    assert correlator.malformed_count == 1


def test_send_failure_does_not_leak_pending() -> None:
    class BrokenTransport(RecordingTransport):
        def send(self, message):
            raise ServerStopped("srv", "write failed")

    correlator = RequestCorrelator("srv", BrokenTransport())
    with pytest.raises(ServerStopped):
        correlator.call("x")
    assert correlator.pending_count == 0


def test_notify_sends_message_without_id() -> None:
    transport = RecordingTransport()
    RequestCorrelator("srv", transport).notify("notifications/initialized")
    assert transport.sent == [{"jsonrpc": "2.0", "method": "notifications/initialized"}]
