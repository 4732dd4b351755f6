from datetime import timedelta

import pytest

from circulation.errors import ValidationError
from circulation.telemetry import TelemetryService, resolve_time_range


@pytest.fixture
def telemetry(storage, clock):
    return TelemetryService(storage, clock=clock)


def test_resolve_time_range():
    assert resolve_time_range("1d") == 1
    assert resolve_time_range("30d") == 30
    assert resolve_time_range(None) == 7
    assert resolve_time_range("90d") == 7


def test_event_bumps_session(telemetry, storage, clock):
    session = telemetry.start_session(user_agent="Mozilla", ip_address="10.0.0.1")
    clock.advance(minutes=5)
    telemetry.record_event(session.id, "click", "navigation", "open_book", payload={"bookId": "b1"})

    stored = storage.get_session(session.id)
    assert stored.events_count == 1
    assert stored.end_time == clock()
    assert stored.user_agent == "Mozilla"


def test_event_for_unknown_session_is_kept(telemetry, storage, clock):
    telemetry.record_event("ghost", "click", "navigation", "open_book")
    assert storage.get_session("ghost") is None
    assert [e.event_name for e in storage.list_events(clock() - timedelta(days=1))] == ["open_book"]


@pytest.mark.parametrize("missing", ["session_id", "event_type", "event_category", "event_name"])
def test_event_requires_fields(telemetry, missing):
    fields = {"session_id": "s", "event_type": "t", "event_category": "c", "event_name": "n"}
    fields[missing] = " "
    with pytest.raises(ValidationError):
        telemetry.record_event(**fields)


def test_metric_requires_number(telemetry):
    with pytest.raises(ValidationError, match="value must be a number"):
        telemetry.record_metric("s", "timing", "page_load", None)
    with pytest.raises(ValidationError):
        telemetry.record_metric("s", "timing", "page_load", True)


def test_list_events_newest_first_with_paging(telemetry, clock):
    session = telemetry.start_session()
    for name in ("first", "second", "third"):
        telemetry.record_event(session.id, "click", "ui", name)
        clock.advance(minutes=1)

    events = telemetry.list_events()
    assert [e["event_name"] for e in events] == ["third", "second", "first"]
    assert events[0]["session_start"] == session.start_time.isoformat()
    assert [e["event_name"] for e in telemetry.list_events(limit=1, offset=1)] == ["second"]
    assert [e["event_name"] for e in telemetry.list_events(event_name="first")] == ["first"]

    with pytest.raises(ValidationError):
        telemetry.list_events(limit=0)


def test_dashboard_summary(telemetry, clock):
    session = telemetry.start_session()
    telemetry.record_event(session.id, "input", "search", "search", payload={"query": "dune"})
    telemetry.record_event(session.id, "input", "search", "search", payload={"query": "dune"})
    telemetry.record_event(session.id, "input", "search", "search", payload={"query": "emma"})
    telemetry.record_event(session.id, "error", "api", "load_books", error_message="timeout")
    telemetry.record_metric(session.id, "timing", "page_load", 100)
    telemetry.record_metric(session.id, "timing", "page_load", 300, unit="ms")

    summary = telemetry.dashboard("7d")
    assert summary["totalEvents"] == 4
    assert summary["totalSessions"] == 1
    assert summary["topEvents"] == [
        {"event_name": "search", "count": 3},
        {"event_name": "load_books", "count": 1},
    ]
    assert summary["eventsByCategory"] == [
        {"event_category": "search", "count": 3},
        {"event_category": "api", "count": 1},
    ]
    assert summary["eventsOverTime"] == [{"date": "2024-01-10", "count": 4}]
    assert summary["errorEvents"] == [{"event_name": "load_books", "error_message": "timeout", "count": 1}]
    assert summary["searchAnalytics"] == [
        {"search_query": "dune", "count": 2},
        {"search_query": "emma", "count": 1},
    ]
    assert summary["performanceMetrics"] == [{"metric_name": "page_load", "count": 2, "average": 200.0}]


def test_dashboard_time_range_window(telemetry, clock):
    old = telemetry.start_session()
    telemetry.record_event(old.id, "click", "ui", "old_click")
    clock.advance(days=3)
    recent = telemetry.start_session()
    telemetry.record_event(recent.id, "click", "ui", "new_click")

    day = telemetry.dashboard("1d")
    assert day["totalEvents"] == 1
    assert day["totalSessions"] == 1
    assert day["topEvents"] == [{"event_name": "new_click", "count": 1}]

    week = telemetry.dashboard("7d")
    assert week["totalEvents"] == 2
    assert week["totalSessions"] == 2

    clock.advance(days=10)
    assert telemetry.dashboard("7d")["totalEvents"] == 0
    assert telemetry.dashboard("30d")["totalEvents"] == 2


# --- API ---
def test_api_session_event_and_performance(client, lib):
    response = client.post("/api/telemetry/session", json={"referrer": "https://example.com"})
    assert response.status_code == 200
    session_id = response.json()["sessionId"]

    response = client.post("/api/telemetry/event", json={
        "sessionId": session_id,
        "eventType": "input",
        "eventCategory": "search",
        "eventName": "search",
        "pageUrl": "/books",
        "payload": {"query": "dune"},
        "duration": 12.5,
    })
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["eventId"]

    response = client.post("/api/telemetry/performance", json={
        "sessionId": session_id, "metricType": "timing", "metricName": "page_load", "value": 250, "unit": "ms",
    })
    assert response.status_code == 200
    assert response.json()["success"] is True

    session = lib.storage.get_session(session_id)
    assert session.events_count == 1
    assert session.ip_address == "testclient"
    assert session.referrer == "https://example.com"

    events = client.get("/api/telemetry/events").json()
    assert len(events) == 1
    assert events[0]["page_url"] == "/books"
    assert events[0]["duration_ms"] == 12.5
    assert events[0]["ip_address"] == "testclient"

    summary = client.get("/api/telemetry/dashboard", params={"timeRange": "1d"}).json()
    assert summary["searchAnalytics"] == [{"search_query": "dune", "count": 1}]
    assert summary["performanceMetrics"] == [{"metric_name": "page_load", "count": 1, "average": 250.0}]


def test_api_event_missing_name_is_400(client):
    session_id = client.post("/api/telemetry/session", json={}).json()["sessionId"]
    response = client.post("/api/telemetry/event", json={
        "sessionId": session_id, "eventType": "click", "eventCategory": "ui",
    })
    assert response.status_code == 400
    assert response.json() == {"detail": "eventName is required"}


def test_api_bad_telemetry_payloads_are_400(client):
    response = client.post("/api/telemetry/event", json={
        "sessionId": "s", "eventType": "click", "eventCategory": "ui", "eventName": "n", "payload": "text",
    })
    assert response.status_code == 400
    assert client.post("/api/telemetry/performance", json={"metricType": "timing", "metricName": "x"}).status_code == 400
    assert client.get("/api/telemetry/events", params={"limit": 0}).status_code == 400
