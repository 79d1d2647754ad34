from __future__ import annotations

import pytest
import requests

from duneapi_client.adapters.http_client import (
    API_KEY_HEADER,
    HttpClient,
    HttpClientConfig,
    parse_rate_limit,
    parse_retry_after,
)
from duneapi_client.core.errors import APIError, RequestUnsuccessfulError, TransportError
from duneapi_client.core.models import RateLimit, RetryPolicy
from tests.support.stubs import RecordingSleep, StubResponse, StubSession


def _client(responses, **config):
    session = StubSession(responses)
    sleep = RecordingSleep()
    client = HttpClient(HttpClientConfig(**config), session=session, sleep=sleep)
    return client, session, sleep


def test_success_returns_immediately_with_credential_header():
    client, session, sleep = _client([StubResponse({"ok": True})])

    resp = client.request("GET", "https://api.dune.com/x", api_key="secret")

    assert resp.status_code == 200
    assert len(session.calls) == 1
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert kwargs["headers"][API_KEY_HEADER] == "secret"
    assert kwargs["timeout"] == 30.0
    assert sleep.calls == []


def test_retryable_status_then_success():
    client, session, sleep = _client(
        [StubResponse(text="busy", status=429, reason="Too Many Requests"), StubResponse({"ok": True})]
    )

    resp = client.request("GET", "https://api.dune.com/x")

    assert resp.status_code == 200
    assert len(session.calls) == 2
    assert sleep.calls == pytest.approx([0.6])


def test_attempt_budget_is_respected():
    client, session, sleep = _client(
        [StubResponse(text="down", status=503, reason="Service Unavailable")] * 3
    )

    with pytest.raises(APIError) as excinfo:
        client.request("GET", "https://api.dune.com/x")

    assert len(session.calls) == 3
    assert len(sleep.calls) == 2
    assert excinfo.value.status_code == 503
    assert isinstance(excinfo.value, RequestUnsuccessfulError)
    assert "request was not successful" in str(excinfo.value)


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(max_attempts=6, initial_backoff=0.5, max_backoff=2.0, jitter=0.1)
    client, session, sleep = _client([StubResponse(text="", status=502)] * 6, retry=policy)

    with pytest.raises(APIError):
        client.request("GET", "https://api.dune.com/x")

    assert len(session.calls) == 6
    assert sleep.calls == pytest.approx([0.6, 1.1, 2.1, 2.1, 2.1])
    assert all(a <= b for a, b in zip(sleep.calls, sleep.calls[1:]))
    assert max(sleep.calls) <= policy.max_backoff + policy.jitter


def test_non_retryable_status_fails_fast_with_server_message():
    client, session, sleep = _client(
        [StubResponse({"error": "invalid API Key"}, status=401, reason="Unauthorized")]
    )

    with pytest.raises(APIError) as excinfo:
        client.request("POST", "https://api.dune.com/x", json={})

    err = excinfo.value
    assert len(session.calls) == 1
    assert sleep.calls == []
    assert err.status_code == 401
    assert err.body_snippet == "invalid API Key"
    assert err.rate_limit is None
    assert str(err) == "request was not successful: http 401 Unauthorized: invalid API Key"


def test_retry_after_wins_over_shorter_backoff():
    client, session, sleep = _client(
        [StubResponse(text="slow down", status=429, headers={"Retry-After": "3"}), StubResponse({})]
    )

    client.request("GET", "https://api.dune.com/x")

    assert sleep.calls == [3.0]


def test_rate_limit_headers_are_parsed_onto_error():
    headers = {"X-RateLimit-Limit": "40", "X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1718000000"}
    client, _, _ = _client([StubResponse(text="nope", status=403, headers=headers)])

    with pytest.raises(APIError) as excinfo:
        client.request("GET", "https://api.dune.com/x")

    rl = excinfo.value.rate_limit
    assert rl is not None
    assert (rl.limit, rl.remaining, rl.reset) == (40, 0, 1718000000)


def test_missing_rate_limit_headers_yield_none():
    assert parse_rate_limit({}) is None
    assert parse_rate_limit({"Content-Type": "application/json"}) is None


def test_zero_quota_is_not_treated_as_absent():
    headers = {"X-RateLimit-Limit": "0", "X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "0"}

    assert parse_rate_limit(headers) == RateLimit(limit=0, remaining=0, reset=0)
    assert parse_rate_limit({"X-RateLimit-Limit": "garbage"}) == RateLimit(limit=0, remaining=0, reset=0)


@pytest.mark.parametrize("value", ["inf", "-inf", "nan", "Infinity", "0", "-3", "soon"])
def test_unusable_retry_after_is_ignored(value):
    assert parse_retry_after({"Retry-After": value}) is None


def test_infinite_retry_after_falls_back_to_backoff():
    client, _, sleep = _client(
        [StubResponse(text="slow down", status=429, headers={"Retry-After": "inf"}), StubResponse({})]
    )

    client.request("GET", "https://api.dune.com/x")

    assert sleep.calls == pytest.approx([0.6])


def test_malformed_error_body_falls_back_to_truncated_snippet():
    body = "<html>" + "x" * 100 + "</html>"
    client, _, _ = _client([StubResponse(text=body, status=400, reason="Bad Request")], body_snippet_limit=16)

    with pytest.raises(APIError) as excinfo:
        client.request("GET", "https://api.dune.com/x")

    assert excinfo.value.body_snippet == body[:16]


def test_connection_errors_are_retried():
    client, session, sleep = _client(
        [requests.ConnectionError("reset by peer"), StubResponse({"ok": True})]
    )

    resp = client.request("GET", "https://api.dune.com/x")

    assert resp.status_code == 200
    assert len(session.calls) == 2
    assert len(sleep.calls) == 1


def test_connection_errors_exhaust_into_transport_error():
    client, session, _ = _client([requests.Timeout("t/o")] * 3)

    with pytest.raises(TransportError) as excinfo:
        client.request("GET", "https://api.dune.com/x")

    assert len(session.calls) == 3
    assert isinstance(excinfo.value.__cause__, requests.Timeout)
