"""Integration tests for the FastAPI backend.

Uses TestClient with explicit settings and an in-process tracker; no upstream
client or database needed.
"""

import csv
import io
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from tests.factories import complete_event, ring_no_answer_event

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client(mock_settings: object) -> Iterator[TestClient]:  # noqa: ARG001 - mock_settings activates patches
    """Create a TestClient; the lifespan builds the tracker from mock settings."""
    from agentstats.api.main import app

    with TestClient(app) as tc:
        yield tc


def _post_call(client: TestClient, **fields: Any) -> dict[str, Any]:
    body = {"queue": "sales", "talk_time": 60, "wait_time": 5, **fields}
    resp = client.post("/calls", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class TestStatsEndpoints:
    @pytest.mark.integration
    def test_initial_stats(self, client: TestClient) -> None:
        resp = client.get("/stats")
        assert resp.status_code == 200
        body = resp.json()
        assert body["agent_id"] == "1001"
        assert body["name"] == "Alice"
        assert body["total_calls"] == 0
        assert len(body["hourly_stats"]) == 24

    @pytest.mark.integration
    def test_hourly_and_peak_hours(self, client: TestClient) -> None:
        _post_call(client, start_time="2026-03-02T09:15:00")
        _post_call(client, start_time="2026-03-02T09:45:00")
        hourly = client.get("/stats/hourly").json()
        assert len(hourly) == 24
        assert hourly[9]["call_count"] == 2
        assert client.get("/stats/peak-hours").json() == {"hours": [9]}

    @pytest.mark.integration
    def test_queue_filter(self, client: TestClient) -> None:
        _post_call(client, queue="sales")
        _post_call(client, queue="support")
        assert len(client.get("/stats/queues").json()) == 2
        [entry] = client.get("/stats/queues", params={"queue": "support"}).json()
        assert entry["queue"] == "support"
        assert client.get("/stats/queues", params={"queue": "none"}).json() == []


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


class TestCallEndpoints:
    @pytest.mark.integration
    def test_manual_call_recorded(self, client: TestClient) -> None:
        record = _post_call(client, call_id="manual-1")
        assert record["call_id"] == "manual-1"
        assert client.get("/stats").json()["total_calls"] == 1

    @pytest.mark.integration
    def test_generated_call_id(self, client: TestClient) -> None:
        record = _post_call(client)
        assert record["call_id"]

    @pytest.mark.integration
    def test_duplicate_call_conflicts(self, client: TestClient) -> None:
        _post_call(client, call_id="dup-1")
        resp = client.post("/calls", json={"call_id": "dup-1", "talk_time": 10})
        assert resp.status_code == 409
        assert client.get("/stats").json()["total_calls"] == 1

    @pytest.mark.integration
    def test_invalid_call_rejected(self, client: TestClient) -> None:
        resp = client.post("/calls", json={"talk_time": -1})
        assert resp.status_code == 422

    @pytest.mark.integration
    def test_history_filters_and_paging(self, client: TestClient) -> None:
        _post_call(client, call_id="a", queue="sales")
        _post_call(client, call_id="b", queue="support", disposition="missed")
        _post_call(client, call_id="c", queue="sales", direction="outbound")

        ids = [c["call_id"] for c in client.get("/calls").json()]
        assert ids == ["c", "b", "a"]
        assert [c["call_id"] for c in client.get("/calls", params={"queue": "sales"}).json()] == ["c", "a"]
        assert [c["call_id"] for c in client.get("/calls", params={"disposition": "missed"}).json()] == ["b"]
        assert [c["call_id"] for c in client.get("/calls", params={"direction": "outbound"}).json()] == ["c"]
        assert [c["call_id"] for c in client.get("/calls", params={"limit": 1, "offset": 1}).json()] == ["b"]

    @pytest.mark.integration
    def test_history_rejects_bad_limit(self, client: TestClient) -> None:
        assert client.get("/calls", params={"limit": 0}).status_code == 422

    @pytest.mark.integration
    def test_wrap_time(self, client: TestClient) -> None:
        _post_call(client, call_id="w1", talk_time=100)
        resp = client.post("/calls/w1/wrap", json={"wrap_time": 30})
        assert resp.status_code == 200
        assert resp.json()["wrap_time"] == 30
        assert client.get("/stats").json()["total_wrap_time"] == 30

    @pytest.mark.integration
    def test_wrap_time_unknown_call(self, client: TestClient) -> None:
        resp = client.post("/calls/nope/wrap", json={"wrap_time": 30})
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Event ingestion
# ---------------------------------------------------------------------------


class TestEventsEndpoint:
    @pytest.mark.integration
    def test_envelope_event_recorded(self, client: TestClient) -> None:
        resp = client.post("/events", json=complete_event("u-1"))
        assert resp.json() == {"recorded": True}
        assert client.get("/stats").json()["total_calls"] == 1

    @pytest.mark.integration
    def test_duplicate_and_foreign_events(self, client: TestClient) -> None:
        client.post("/events", json=complete_event("u-1"))
        assert client.post("/events", json=complete_event("u-1")).json() == {"recorded": False}
        foreign = complete_event("u-2", Interface="PJSIP/2002")
        assert client.post("/events", json=foreign).json() == {"recorded": False}
        assert client.get("/stats").json()["total_calls"] == 1

    @pytest.mark.integration
    def test_missed_call_event(self, client: TestClient) -> None:
        client.post("/events", json=ring_no_answer_event("u-3")["data"])
        body = client.get("/stats").json()
        assert body["missed_calls"] == 1

    @pytest.mark.integration
    def test_unknown_event_ignored(self, client: TestClient) -> None:
        assert client.post("/events", json={"Event": "Hangup"}).json() == {"recorded": False}


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class TestAlertEndpoints:
    @pytest.mark.integration
    def test_alerts_raised_with_no_login_time(self, client: TestClient) -> None:
        _post_call(client)
        body = client.get("/alerts").json()
        assert body["unacknowledged"] == 2
        assert {a["metric"] for a in body["alerts"]} == {"calls_per_hour", "occupancy"}

    @pytest.mark.integration
    def test_acknowledge_one(self, client: TestClient) -> None:
        _post_call(client)
        alert_id = client.get("/alerts").json()["alerts"][0]["id"]
        resp = client.post(f"/alerts/{alert_id}/ack")
        assert resp.json() == {"acknowledged": 1}
        assert client.get("/alerts").json()["unacknowledged"] == 1

    @pytest.mark.integration
    def test_acknowledge_unknown(self, client: TestClient) -> None:
        assert client.post("/alerts/missing/ack").status_code == 404

    @pytest.mark.integration
    def test_acknowledge_all(self, client: TestClient) -> None:
        _post_call(client)
        assert client.post("/alerts/ack-all").json() == {"acknowledged": 2}
        assert client.get("/alerts").json()["unacknowledged"] == 0


# ---------------------------------------------------------------------------
# Period / reset / export
# ---------------------------------------------------------------------------


class TestPeriodAndReset:
    @pytest.mark.integration
    def test_set_custom_period(self, client: TestClient) -> None:
        _post_call(client)
        resp = client.post(
            "/period",
            json={"period": "custom", "start": "2026-01-01T08:00:00", "end": "2026-01-01T17:00:00"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["period"] == "custom"
        assert body["period_start"].startswith("2026-01-01T08:00:00")
        assert body["total_calls"] == 0

    @pytest.mark.integration
    def test_invalid_period(self, client: TestClient) -> None:
        assert client.post("/period", json={"period": "fortnight"}).status_code == 422

    @pytest.mark.integration
    def test_reset(self, client: TestClient) -> None:
        _post_call(client)
        body = client.post("/reset").json()
        assert body["total_calls"] == 0
        assert body["recent_calls"] == []


class TestExportEndpoints:
    @pytest.mark.integration
    def test_csv(self, client: TestClient) -> None:
        _post_call(client, call_id="x1", remote_party="=cmd")
        resp = client.get("/export.csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows[0][0] == "Call ID"
        assert rows[1][0] == "x1"
        assert rows[1][2] == "'=cmd"

    @pytest.mark.integration
    def test_json(self, client: TestClient) -> None:
        _post_call(client)
        resp = client.get("/export.json")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        assert resp.json()["total_calls"] == 1


# ---------------------------------------------------------------------------
# Health / metrics
# ---------------------------------------------------------------------------


class TestHealthAndMetrics:
    @pytest.mark.integration
    def test_health(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body == {"status": "healthy", "agent_id": "1001", "tracking": True, "error": None}

    @pytest.mark.integration
    def test_metrics_exposition(self, client: TestClient) -> None:
        _post_call(client)
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "agentstats_calls_recorded_total" in resp.text
        assert "agentstats_requests_total" in resp.text
        assert 'agentstats_agent_kpi{agent_id="1001",kpi="service_level"}' in resp.text

