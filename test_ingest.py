#!/usr/bin/env python3
"""
Tests for the upstream normalizer (no network: requests.get is replaced)
"""
import asyncio
import math
import time

import pytest
import requests

from atlas import ingest
from atlas.ingest import Point, fetch_and_normalize, normalize_entry, normalize_payload

NOW = "2025-06-01T12:00:00.000Z"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


def install_upstream(monkeypatch, responses):
    """Serve ``responses[suffix]`` (FakeResponse or exception) and 404 for everything else."""
    seen = []

    def fake_get(url, timeout=None):
        suffix = url.rsplit("/", 1)[1].split(".")[0]
        seen.append(suffix)
        r = responses.get(suffix)
        if r is None:
            return FakeResponse(status_code=404)
        if isinstance(r, Exception):
            raise r
        return r

    monkeypatch.setattr(ingest.requests, "get", fake_get)
    return seen


def test_pair_form_uses_processing_time():
    p = normalize_entry([10.0, 20.0], NOW)
    assert p == Point(lat=10.0, lon=20.0, time=NOW)


def test_pair_form_ignores_trailing_altitude():
    p = normalize_entry([-33.5, 151.25, 17.8], NOW)
    assert (p.lat, p.lon) == (-33.5, 151.25)


def test_object_form_keeps_upstream_time():
    p = normalize_entry({"lat": 1, "lon": 2, "time": "2024-01-01T00:00:00Z"}, NOW)
    assert p == Point(lat=1.0, lon=2.0, time="2024-01-01T00:00:00Z")


def test_object_form_without_time_gets_processing_time():
    assert normalize_entry({"lat": 1, "lon": 2}, NOW).time == NOW
    assert normalize_entry({"lat": 1, "lon": 2, "time": None}, NOW).time == NOW


def test_numeric_strings_are_coerced():
    p = normalize_entry({"lat": "45.5", "lon": "-122.25"}, NOW)
    assert (p.lat, p.lon) == (45.5, -122.25)


@pytest.mark.parametrize(
    "entry",
    [
        {"lat": "bad", "lon": 2},
        {"lat": 1, "lon": None},
        {"lat": float("nan"), "lon": 2},
        {"lat": 1, "lon": float("inf")},
        [True, 2],
        ["nan", 3],
        {"lat": 1},
        {"latitude": 1, "longitude": 2},
        [5],
        "10,20",
        42,
        None,
    ],
)
def test_unusable_entries_are_dropped(entry):
    assert normalize_entry(entry, NOW) is None


def test_bad_entry_does_not_discard_siblings():
    payload = [{"lat": 1, "lon": 2, "time": "2024-01-01T00:00:00Z"}, {"lat": "bad", "lon": 2}]
    pts = normalize_payload(payload, NOW)
    assert pts == [Point(lat=1.0, lon=2.0, time="2024-01-01T00:00:00Z")]


def test_payload_order_is_preserved_without_dedup():
    payload = [[3, 3], [1, 1], [3, 3], "junk", [2, 2]]
    pts = normalize_payload(payload, NOW)
    assert [(p.lat, p.lon) for p in pts] == [(3, 3), (1, 1), (3, 3), (2, 2)]


def test_non_list_payload_is_rejected():
    assert normalize_payload({"lat": 1, "lon": 2}, NOW) is None
    assert normalize_payload("[]", NOW) is None
    assert normalize_payload([], NOW) == []


def test_single_source_scenario(monkeypatch):
    seen = install_upstream(monkeypatch, {"05": FakeResponse(payload=[[10.0, 20.0], [11.0, 21.0]])})
    flights = asyncio.run(fetch_and_normalize())
    assert sorted(seen) == [f"{i:02d}" for i in range(24)]
    assert list(flights) == ["hour_05"]
    pts = flights["hour_05"]
    assert [(p.lat, p.lon) for p in pts] == [(10.0, 20.0), (11.0, 21.0)]
    # one processing instant per poll
    assert pts[0].time == pts[1].time
    assert pts[0].time.endswith("Z")


def test_failed_sources_are_absent_but_empty_lists_are_kept(monkeypatch):
    install_upstream(
        monkeypatch,
        {
            "00": FakeResponse(payload=[{"lat": 1, "lon": 2}]),
            "01": FakeResponse(payload={"error": "nope"}),
            "02": FakeResponse(bad_json=True),
            "03": requests.ConnectionError("connection refused"),
            "04": FakeResponse(status_code=500, payload=[[1, 2]]),
            "05": FakeResponse(payload=[]),
            "06": FakeResponse(payload=[{"lat": "x", "lon": "y"}]),
        },
    )
    flights = asyncio.run(fetch_and_normalize())
    assert list(flights) == ["hour_00", "hour_05", "hour_06"]
    assert flights["hour_05"] == []
    assert flights["hour_06"] == []


def test_all_sources_failing_yields_empty_map(monkeypatch):
    install_upstream(monkeypatch, {})
    assert asyncio.run(fetch_and_normalize()) == {}


def test_keys_follow_suffix_order(monkeypatch):
    install_upstream(monkeypatch, {s: FakeResponse(payload=[[1, 1]]) for s in ("23", "07", "00", "12")})
    flights = asyncio.run(fetch_and_normalize())
    assert list(flights) == ["hour_00", "hour_07", "hour_12", "hour_23"]


def test_repeat_poll_is_equal_up_to_assigned_times(monkeypatch):
    payload = [[1.5, 2.5], {"lat": 3, "lon": 4, "time": "2024-02-02T00:00:00Z"}, {"lat": 5, "lon": 6}]
    install_upstream(monkeypatch, {"09": FakeResponse(payload=payload)})
    a = asyncio.run(fetch_and_normalize())
    b = asyncio.run(fetch_and_normalize())

    def strip(flights):
        return {k: [(p.lat, p.lon) for p in v] for k, v in flights.items()}

    assert strip(a) == strip(b)
    assert a["hour_09"][1].time == b["hour_09"][1].time == "2024-02-02T00:00:00Z"


def test_source_count_and_url(monkeypatch):
    urls = []

    def fake_get(url, timeout=None):
        urls.append(url)
        return FakeResponse(payload=[])

    monkeypatch.setattr(ingest.requests, "get", fake_get)
    flights = asyncio.run(fetch_and_normalize(count=3, base_url="http://upstream.test/feed/"))
    assert sorted(urls) == [
        "http://upstream.test/feed/00.json",
        "http://upstream.test/feed/01.json",
        "http://upstream.test/feed/02.json",
    ]
    assert flights == {"hour_00": [], "hour_01": [], "hour_02": []}


def test_hour_helpers():
    assert ingest.hour_number("hour_07") == 7
    assert ingest.hour_number("hour_xx") == 0
    assert ingest.hour_number(None) == 0
    assert ingest.hour_color(0) == ingest.hour_color(24) == "#e41a1c"
    assert ingest.active_hour_keys({"hour_00": [], "hour_01": [Point(lat=0, lon=0, time=NOW)]}) == ["hour_01"]


def test_coerce_coordinate():
    assert ingest.coerce_coordinate(3) == 3.0
    assert ingest.coerce_coordinate("-0.5") == -0.5
    assert ingest.coerce_coordinate("1e400") is None
    assert ingest.coerce_coordinate([1]) is None
    assert math.isfinite(ingest.coerce_coordinate(1e308))
    assert ingest.coerce_coordinate(10**400) is None


def test_oversized_integer_drops_only_its_row(monkeypatch):
    install_upstream(
        monkeypatch,
        {
            "00": FakeResponse(payload=[[10**400, 2], [1, 2], {"lat": 3, "lon": -(10**400)}]),
            "05": FakeResponse(payload=[[10.0, 20.0]]),
        },
    )
    flights = asyncio.run(fetch_and_normalize())
    assert list(flights) == ["hour_00", "hour_05"]
    assert [(p.lat, p.lon) for p in flights["hour_00"]] == [(1.0, 2.0)]
    assert [(p.lat, p.lon) for p in flights["hour_05"]] == [(10.0, 20.0)]


def test_all_sources_are_fetched_at_once(monkeypatch):
    def slow_get(url, timeout=None):
        time.sleep(0.3)
        return FakeResponse(payload=[[1, 2]])

    monkeypatch.setattr(ingest.requests, "get", slow_get)
    started = time.monotonic()
    flights = asyncio.run(fetch_and_normalize(count=24))
    elapsed = time.monotonic() - started
    assert len(flights) == 24
    # a handful of worker threads would take several multiples of one GET
    assert elapsed < 0.9, f"24 slow GETs took {elapsed:.2f}s"


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
