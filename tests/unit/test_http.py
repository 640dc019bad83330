from __future__ import annotations

import pytest
import requests

from london_crime.common.http import (
    CrimeApiClient,
    RateLimited,
    RetryConfig,
    TransportError,
    UpstreamError,
    backoff_delay,
)


class FakeResponse:
    def __init__(self, status_code: int, payload=None, raises_json: bool = False):
        self.status_code = status_code
        self._payload = payload
        self._raises_json = raises_json

    def json(self):
        if self._raises_json:
            raise ValueError("bad json")
        return self._payload


def _scripted(responses):
    calls = []

    def _request(**kwargs):
        calls.append(kwargs)
        item = responses[len(calls) - 1]
        if isinstance(item, BaseException):
            raise item
        return item

    return _request, calls


def _client(max_retries: int = 3, base_delay: float = 1.0):
    sleeps: list[float] = []
    client = CrimeApiClient(
        "https://example.test/crimes",
        retry=RetryConfig(max_retries=max_retries, base_delay=base_delay),
        sleep=sleeps.append,
    )
    return client, sleeps


def test_get_crimes_success_sends_date_and_poly(monkeypatch):
    client, sleeps = _client()
    request, calls = _scripted([FakeResponse(200, [{"persistent_id": "a"}])])
    monkeypatch.setattr(client.session, "request", request)

    payload = client.get_crimes("2024-03", "51.5,-0.1:51.6,-0.1:51.6,-0.2")

    assert payload == [{"persistent_id": "a"}]
    assert calls[0]["params"] == {"date": "2024-03", "poly": "51.5,-0.1:51.6,-0.1:51.6,-0.2"}
    assert calls[0]["method"] == "GET"
    assert sleeps == []


def test_503_twice_then_success_backs_off_exponentially(monkeypatch):
    client, sleeps = _client(max_retries=3, base_delay=1.0)
    records = [{"persistent_id": str(i)} for i in range(3)]
    request, calls = _scripted([FakeResponse(503), FakeResponse(503), FakeResponse(200, records)])
    monkeypatch.setattr(client.session, "request", request)

    payload = client.get_crimes("2024-03", "poly")

    assert len(payload) == 3
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_rate_limited_uses_longer_backoff(monkeypatch):
    client, sleeps = _client(max_retries=3, base_delay=0.5)
    request, _calls = _scripted([FakeResponse(429), FakeResponse(429), FakeResponse(200, [])])
    monkeypatch.setattr(client.session, "request", request)

    assert client.get_crimes("2024-03", "poly") == []
    assert sleeps == [1.5, 4.5]


def test_retries_exhausted_reraises_last_error(monkeypatch):
    client, sleeps = _client(max_retries=2)
    request, calls = _scripted([FakeResponse(500), FakeResponse(502)])
    monkeypatch.setattr(client.session, "request", request)

    with pytest.raises(UpstreamError) as excinfo:
        client.get_crimes("2024-03", "poly")

    assert excinfo.value.status_code == 502
    assert len(calls) == 2
    assert sleeps == [1.0]


def test_permanent_rejection_is_not_retried(monkeypatch):
    client, sleeps = _client()
    request, calls = _scripted([FakeResponse(400)])
    monkeypatch.setattr(client.session, "request", request)

    with pytest.raises(UpstreamError) as excinfo:
        client.get_crimes("2024-03", "poly")

    assert excinfo.value.retryable is False
    assert len(calls) == 1
    assert sleeps == []


def test_transport_error_is_wrapped_and_retried(monkeypatch):
    client, sleeps = _client(max_retries=2)
    request, calls = _scripted([requests.ConnectionError("reset"), requests.Timeout("slow")])
    monkeypatch.setattr(client.session, "request", request)

    with pytest.raises(TransportError):
        client.get_crimes("2024-03", "poly")

    assert len(calls) == 2
    assert sleeps == [1.0]


def test_invalid_json_fails_without_retry(monkeypatch):
    client, _sleeps = _client()
    request, calls = _scripted([FakeResponse(200, raises_json=True)])
    monkeypatch.setattr(client.session, "request", request)

    with pytest.raises(UpstreamError):
        client.get_crimes("2024-03", "poly")
    assert len(calls) == 1


def test_non_list_payload_is_rejected(monkeypatch):
    client, _sleeps = _client()
    request, _calls = _scripted([FakeResponse(200, {"error": "nope"})])
    monkeypatch.setattr(client.session, "request", request)

    with pytest.raises(UpstreamError):
        client.get_crimes("2024-03", "poly")


def test_backoff_delay_table():
    assert [backoff_delay(n, UpstreamError("x"), 1.0) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert [backoff_delay(n, RateLimited("x"), 1.0) for n in (1, 2, 3)] == [3.0, 9.0, 27.0]
