from __future__ import annotations

import io
import threading
from typing import List

import pytest
import requests
from requests.adapters import BaseAdapter

import retrack
from retrack.application.config_store import RetryConfigStore
from retrack.application.retry_tracker import RetryTracker
from retrack.infrastructure.http_client import RetryCancelledError, RetrySession, retry_session


def _make_response(status_code: int, request: requests.PreparedRequest) -> requests.Response:
    r = requests.Response()
    r.status_code = status_code
    r.url = request.url
    r.request = request
    r._content = b"{}"  # type: ignore[attr-defined]
    r.raw = io.BytesIO(b"{}")
    r.headers["Content-Type"] = "application/json"
    return r


class FakeAdapter(BaseAdapter):
    """Transport adapter that replays a scripted list of outcomes"""

    def __init__(self, outcomes):
        super().__init__()
        self.outcomes = list(outcomes)
        self.sent: List[requests.PreparedRequest] = []
        self.responses: List[requests.Response] = []

    def send(self, request, **kwargs):
        self.sent.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        response = _make_response(outcome, request)
        self.responses.append(response)
        return response

    def close(self):
        pass


def _session(outcomes, **config):
    sleeps: List[float] = []
    session = RetrySession(sleep=sleeps.append, **config)
    adapter = FakeAdapter(outcomes)
    session.mount("http://", adapter)
    return session, adapter, sleeps


def test_get_retried_after_network_errors():
    """GET failing twice without a response succeeds on the third attempt"""
    session, adapter, sleeps = _session(
        [requests.ConnectionError("reset"), requests.ConnectionError("reset"), 200],
        max_retries=2,
        retry_delay_ms=50,
    )

    resp = session.get("http://example.test/a")

    assert resp.status_code == 200
    assert len(adapter.sent) == 3
    assert sleeps == [pytest.approx(0.05), pytest.approx(0.05)]
    assert len(session.tracker) == 0


def test_delete_server_error_not_retried():
    """DELETE answered with 500 fails immediately under the default policy"""
    session, adapter, sleeps = _session([500, 200])

    with pytest.raises(requests.HTTPError) as exc_info:
        session.delete("http://example.test/b")

    assert exc_info.value.response.status_code == 500
    assert len(adapter.sent) == 1
    assert sleeps == []
    assert len(session.tracker) == 0


@pytest.mark.parametrize("max_retries", [0, 1, 3])
def test_budget_exhausted_surfaces_last_error(max_retries):
    """A request that keeps failing is retried exactly max_retries times"""
    errors = [requests.ConnectionError(f"attempt {i}") for i in range(max_retries + 1)]
    session, adapter, sleeps = _session(errors, max_retries=max_retries)

    with pytest.raises(requests.ConnectionError) as exc_info:
        session.get("http://example.test/a")

    assert exc_info.value is errors[-1]
    assert len(adapter.sent) == max_retries + 1
    assert len(sleeps) == max_retries
    assert len(session.tracker) == 0


def test_zero_delay_by_default():
    session, _, sleeps = _session([requests.ConnectionError("reset"), 200])
    session.get("http://example.test/a")
    assert sleeps == [0]


def test_post_not_retried():
    """Unsafe methods are not retried by the default policy"""
    session, adapter, _ = _session([requests.ConnectionError("reset"), 200])

    with pytest.raises(requests.ConnectionError):
        session.post("http://example.test/a", json={"x": 1})

    assert len(adapter.sent) == 1


def test_timeout_not_retried():
    """Timeouts are excluded from the default policy"""
    session, adapter, _ = _session([requests.ReadTimeout("read timed out"), 200])

    with pytest.raises(requests.ReadTimeout):
        session.get("http://example.test/a", timeout=1)

    assert len(adapter.sent) == 1
    assert len(session.tracker) == 0


def test_custom_predicate_retries_server_errors():
    """A custom predicate can opt in to 5xx retries"""
    session, adapter, sleeps = _session(
        [503, 200],
        should_retry=lambda failure: retrack.is_server_error(failure),
        retry_delay_ms=10,
    )

    resp = session.put("http://example.test/a", data=b"payload")

    assert resp.status_code == 200
    assert len(adapter.sent) == 2
    assert sleeps == [pytest.approx(0.01)]


def test_retried_response_is_released():
    """The failed response is closed before the request is re-issued"""
    session, adapter, _ = _session([503, 200], should_retry=retrack.is_server_error)

    session.get("http://example.test/a", stream=True)

    failed, succeeded = adapter.responses
    assert failed.raw.closed
    assert not succeeded.raw.closed


def test_surfaced_response_stays_open():
    session, adapter, _ = _session([500])

    with pytest.raises(requests.HTTPError) as exc_info:
        session.get("http://example.test/a", stream=True)

    assert exc_info.value.response is adapter.responses[0]
    assert not adapter.responses[0].raw.closed


def test_hooks_fire_in_order():
    """Will-retry fires before the delay and start-retry after it"""
    events = []
    sleeps: List[float] = []
    session = RetrySession(
        sleep=lambda seconds: (sleeps.append(seconds), events.append("sleep")),
        on_will_retry=lambda failure: events.append(("will", failure.request.retry_count)),
        on_start_retry=lambda failure: events.append(("start", failure.request.retry_count)),
    )
    session.mount("http://", FakeAdapter([requests.ConnectionError("a"), requests.ConnectionError("b"), 200]))

    session.get("http://example.test/a")

    assert events == [("will", 0), "sleep", ("start", 0), ("will", 1), "sleep", ("start", 1)]


def test_hook_failures_do_not_break_requests():
    def broken(failure):
        raise RuntimeError("boom")

    session, _, _ = _session([requests.ConnectionError("reset"), 200], on_will_retry=broken)
    assert session.get("http://example.test/a").status_code == 200


def test_retry_resends_same_request():
    """Retries carry the same method, body, params and headers"""
    session, adapter, _ = _session(
        [requests.ConnectionError("reset"), 200],
        retryable_methods=["GET"],
    )

    session.get("http://example.test/a", params={"q": "x"}, headers={"X-Trace": "1"})

    first, second = adapter.sent
    assert first.url == second.url == "http://example.test/a?q=x"
    assert first.method == second.method == "GET"
    assert second.headers["X-Trace"] == "1"


def test_cancel_during_delay():
    """Cancelling the session abandons the scheduled retry"""
    session = RetrySession(retry_delay_ms=10, sleep=lambda seconds: session.cancel())
    adapter = FakeAdapter([requests.ConnectionError("reset"), 200])
    session.mount("http://", adapter)
    started = []
    session.configure(on_start_retry=started.append)

    with pytest.raises(RetryCancelledError):
        session.get("http://example.test/a")

    assert len(adapter.sent) == 1
    assert started == []
    assert len(session.tracker) == 0


def test_cancel_event_per_request():
    """A per-call event cancels only that request's retry"""
    event = threading.Event()
    session = RetrySession(sleep=lambda seconds: event.set())
    session.mount("http://", FakeAdapter([requests.ConnectionError("reset"), 200]))

    with pytest.raises(RetryCancelledError):
        session.get("http://example.test/a", cancel_event=event)

    assert len(session.tracker) == 0


def test_closed_session_does_not_wait():
    """A closed session gives up instead of waiting out a long delay"""
    session = RetrySession(retry_delay_ms=60_000)
    session.mount("http://", FakeAdapter([requests.ConnectionError("reset"), 200]))
    session.close()

    with pytest.raises(RetryCancelledError):
        session.get("http://example.test/a")

    assert len(session.tracker) == 0


def test_cancel_only_affects_requests_in_flight():
    """Requests started after cancel() retry normally"""
    session, adapter, sleeps = _session([requests.ConnectionError("reset"), 200])
    session.cancel()

    resp = session.get("http://example.test/a")

    assert resp.status_code == 200
    assert len(adapter.sent) == 2
    assert sleeps == [0]


def test_cancel_then_retry_on_next_request():
    """A cancelled request does not poison the next one"""
    calls = []

    def sleep(seconds):
        calls.append(seconds)
        if len(calls) == 1:
            session.cancel()

    session = RetrySession(sleep=sleep)
    session.mount("http://", FakeAdapter([requests.ConnectionError("a"), requests.ConnectionError("b"), 200]))

    with pytest.raises(RetryCancelledError):
        session.get("http://example.test/a")
    assert session.get("http://example.test/a").status_code == 200
    assert len(calls) == 2


def test_pinned_default_adapter_is_dropped_before_retry():
    """The host default adapter is not carried into the retried request"""
    seen = []
    session, adapter, _ = _session(
        [requests.ConnectionError("reset"), 200],
        on_will_retry=lambda failure: seen.append(failure.request.adapter),
    )

    resp = session.get("http://example.test/a", adapter=adapter)

    assert resp.status_code == 200
    assert seen == [None]
    assert len(adapter.sent) == 2


def test_pinned_custom_adapter_is_kept():
    pinned = FakeAdapter([requests.ConnectionError("reset"), 200])
    session, mounted, _ = _session([])

    resp = session.get("http://example.test/a", adapter=pinned)

    assert resp.status_code == 200
    assert len(pinned.sent) == 2
    assert mounted.sent == []


def test_unexpected_argument():
    session, _, _ = _session([200])
    with pytest.raises(TypeError, match="bogus"):
        session.get("http://example.test/a", bogus=True)


def test_request_options_are_keyword_only():
    """Positional options after the url are rejected rather than misbound"""
    session, adapter, _ = _session([200])
    with pytest.raises(TypeError):
        session.request("GET", "http://example.test/a", {"q": "x"})
    assert adapter.sent == []


def test_explicit_tracker_is_used():
    """An empty tracker passed in is kept, with its own policy"""
    store = RetryConfigStore()
    store.configure(max_retries=1)
    tracker = RetryTracker(store)

    session = RetrySession(tracker=tracker)

    assert len(tracker) == 0
    assert session.tracker is tracker
    assert session.tracker.policy.max_retries == 1


def test_retry_session_applies_config():
    session = retry_session({"max_retries": 1, "retry_delay_ms": 25})

    assert session.tracker.policy.max_retries == 1
    assert session.tracker.policy.retry_delay_ms == 25


def test_sessions_have_independent_policies():
    first, first_adapter, _ = _session([requests.ConnectionError("a"), 200], max_retries=1)
    second, second_adapter, _ = _session([requests.ConnectionError("a"), 200], max_retries=0)

    assert first.get("http://example.test/a").status_code == 200
    with pytest.raises(requests.ConnectionError):
        second.get("http://example.test/a")


def test_retry_session_from_config_file(tmp_path):
    config_file = tmp_path / ".retrack.yml"
    config_file.write_text("retry:\n  max_retries: 1\n  retry_delay_ms: 25\n", encoding="utf-8")

    session = retry_session({"retryable_methods": ["get"]}, config_path=config_file)

    assert session.tracker.policy.max_retries == 1
    assert session.tracker.policy.retry_delay_ms == 25
    assert session.tracker.policy.retryable_methods == ["GET"]
