import pytest

from london_crime.common.errors import FetchFailure
from london_crime.common.http import CrimeApiClient, RetryConfig, TransportError, UpstreamError
from london_crime.harvest.partition_fetcher import PartitionFetcher

pytestmark = pytest.mark.integration


class FakeResponse:
    def __init__(self, status_code: int, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


def _fetcher(boundary_repo, client, sleeps=None):
    sleeps = [] if sleeps is None else sleeps
    return PartitionFetcher(boundary_repo, client, pacing_seconds=0.5, sleep=sleeps.append)


def test_fetch_queries_each_borough_in_name_order(boundary_repo, fake_client_factory, api_crime):
    client = fake_client_factory(
        {
            "Camden": [api_crime("c1"), api_crime("c2", lon=-0.12)],
            "Islington": [api_crime("i1", lon=-0.07)],
        }
    )
    sleeps: list[float] = []

    result = _fetcher(boundary_repo, client, sleeps).fetch("2024-03")

    assert [call[2] for call in client.calls] == ["Camden", "Islington"]
    assert all(call[0] == "2024-03" for call in client.calls)
    assert [r["crime_id"] for r in result.records] == ["c1", "c2", "i1"]
    assert result.area_counts == {"Camden": 2, "Islington": 1}
    assert result.failed_areas == []
    # Paced between requests, never after the last one.
    assert sleeps == [0.5]


def test_one_failing_borough_does_not_sink_the_partition(boundary_repo, fake_client_factory, api_crime, caplog):
    client = fake_client_factory(
        {
            "Camden": TransportError("connection reset"),
            "Islington": [api_crime("i1", lon=-0.07)],
        }
    )

    with caplog.at_level("WARNING"):
        result = _fetcher(boundary_repo, client).fetch("2024-03")

    assert [r["crime_id"] for r in result.records] == ["i1"]
    assert result.failed_areas == ["Camden"]
    assert "AREA_FETCH_FAIL" in {getattr(r, "event", None) for r in caplog.records}


def test_all_boroughs_failing_raises(boundary_repo, fake_client_factory):
    client = fake_client_factory(default=UpstreamError("HTTP 503", status_code=503))

    with pytest.raises(FetchFailure):
        _fetcher(boundary_repo, client).fetch("2024-03")
    assert len(client.calls) == 2


def test_all_empty_responses_are_a_successful_empty_fetch(boundary_repo, fake_client_factory):
    result = _fetcher(boundary_repo, fake_client_factory()).fetch("2024-03")

    assert result.records == []
    assert result.area_counts == {"Camden": 0, "Islington": 0}


def test_crimes_returned_for_two_boroughs_are_kept_once(boundary_repo, fake_client_factory, api_crime):
    shared = api_crime("edge", lon=-0.10)
    client = fake_client_factory({"Camden": [shared, api_crime("c1")], "Islington": [shared]})

    result = _fetcher(boundary_repo, client).fetch("2024-03")

    assert [r["crime_id"] for r in result.records] == ["edge", "c1"]
    assert result.duplicates_dropped == 1


def test_bad_partition_key_is_rejected(boundary_repo, fake_client_factory):
    with pytest.raises(ValueError):
        _fetcher(boundary_repo, fake_client_factory()).fetch("2024-3")


def test_fetch_through_real_client_retries_transient_errors(boundary_repo, monkeypatch, api_crime):
    client_sleeps: list[float] = []
    client = CrimeApiClient(
        "https://example.test/crimes",
        retry=RetryConfig(max_retries=3, base_delay=1.0),
        sleep=client_sleeps.append,
    )
    responses = [
        FakeResponse(503),
        FakeResponse(503),
        FakeResponse(200, [api_crime("c1")]),
        FakeResponse(200, [api_crime("i1", lon=-0.07)]),
    ]
    calls = []

    def _request(**kwargs):
        calls.append(kwargs)
        return responses[len(calls) - 1]

    monkeypatch.setattr(client.session, "request", _request)

    result = _fetcher(boundary_repo, client).fetch("2024-03")

    assert [r["crime_id"] for r in result.records] == ["c1", "i1"]
    assert client_sleeps == [1.0, 2.0]
    assert len(calls) == 4
    assert calls[0]["params"]["date"] == "2024-03"


def test_ids_differing_only_by_whitespace_are_one_crime(boundary_repo, fake_client_factory, api_crime):
    padded = api_crime("abc ")
    client = fake_client_factory({"Camden": [api_crime("abc"), padded]})

    result = _fetcher(boundary_repo, client).fetch("2024-03")

    assert [r["crime_id"] for r in result.records] == ["abc"]
    assert result.duplicates_dropped == 1
