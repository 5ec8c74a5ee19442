"""HTTP tests against the FastAPI app with in-memory stores and the dummy oracle."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from config.settings import Settings
from pipeline.engine import LogPulseEngine
from providers.dummy_llm import DummyLLM
from schemas.events import LogEvent


@pytest.fixture
def engine() -> LogPulseEngine:
    settings = Settings(llm_provider="dummy", store_backend="memory")
    return LogPulseEngine(settings, llm=DummyLLM(), sinks=[])


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine, background_jobs=False)) as c:
        yield c


def _seed(client: TestClient, engine: LogPulseEngine, events: list[LogEvent]) -> None:
    client.portal.call(engine.stores.logs.insert_many, events)


def _payment_outage() -> list[LogEvent]:
    return [
        LogEvent(
            level="ERROR",
            message="Payment failed",
            endpoint="POST /payment/process",
            user_id=f"user_{i}",
            session_id=f"session_{i}",
            error_code="CARD_DECLINED",
        )
        for i in range(6)
    ]


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["llmProvider"] == "dummy"
    assert body["schedulerRunning"] is False


def test_ingest_single_log_is_queued_then_persisted(client, engine):
    resp = client.post(
        "/api/logs",
        json={"level": "error", "message": "Payment failed", "userId": "user_1", "endpoint": "POST /payment/process"},
    )

    assert resp.status_code == 202
    assert resp.json()["message"] == "Log queued for processing"

    client.portal.call(engine.ingestion.drain)
    client.portal.call(engine.accumulator.flush)

    page = client.get("/api/logs").json()
    assert page["total"] == 1
    assert page["logs"][0]["level"] == "ERROR"
    assert page["logs"][0]["userId"] == "user_1"


def test_ingest_batch(client, engine):
    resp = client.post(
        "/api/logs/batch",
        json={"logs": [{"level": "INFO", "message": f"visit {i}"} for i in range(4)]},
    )

    assert resp.status_code == 202
    assert resp.json()["accepted"] == 4
    assert resp.json()["message"] == "4 logs queued for processing"


def test_invalid_log_is_rejected(client):
    resp = client.post("/api/logs", json={"message": "no level"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Validation failed"
    assert body["details"]


def test_empty_batch_is_rejected(client):
    resp = client.post("/api/logs/batch", json={"logs": []})

    assert resp.status_code == 400


def test_log_query_filters_and_stats(client, engine):
    _seed(client, engine, _payment_outage() + [LogEvent(level="INFO", message="ok")])

    errors = client.get("/api/logs", params={"level": "ERROR", "limit": 4}).json()
    stats = client.get("/api/logs/stats").json()

    assert errors["total"] == 6
    assert errors["pages"] == 2
    assert len(errors["logs"]) == 4
    assert stats["total"] == 7
    assert stats["byLevel"] == {"ERROR": 6, "INFO": 1}


def test_cleanup_validates_days(client):
    assert client.delete("/api/logs/cleanup", params={"daysOld": -1}).status_code == 400

    resp = client.delete("/api/logs/cleanup", params={"daysOld": 7})
    assert resp.status_code == 200
    assert resp.json()["logsDeleted"] == 0


def test_analysis_and_explanations(client, engine):
    _seed(client, engine, _payment_outage())

    run = client.post("/api/ai-logs/analyze").json()
    clusters = client.get("/api/ai-logs/clusters").json()
    explained = client.get("/api/ai-logs/explain/Payment_Gateway_Errors")
    anomalies = client.get("/api/ai-logs/anomalies", params={"limit": 3}).json()

    assert run["processed"] == 6
    assert run["clustersEnriched"] == ["Payment_Gateway_Errors"]
    assert clusters[0]["clusterName"] == "Payment_Gateway_Errors"
    assert explained.status_code == 200
    assert explained.json()["cached"] is True
    assert len(anomalies) == 3
    assert client.get("/api/ai-logs/explain/Nope").status_code == 404


def test_analyzed_log_filters(client, engine):
    _seed(client, engine, _payment_outage() + [LogEvent(level="INFO", message="ok")])
    client.post("/api/ai-logs/analyze")

    hot = client.get("/api/ai-logs", params={"minScore": 0.7}).json()
    low = client.get("/api/ai-logs", params={"severity": "low"}).json()

    assert hot["total"] == 6
    assert low["total"] == 1


def test_alert_lifecycle(client, engine):
    _seed(client, engine, _payment_outage())

    evaluation = client.post("/api/alerts/evaluate").json()
    alert_id = next(a["alertId"] for a in evaluation["alerts"] if a["type"] == "CRITICAL_ENDPOINT_FAILURE")

    acked = client.post(f"/api/alerts/{alert_id}/acknowledge", json={"by": "alice"})
    resolved = client.post(f"/api/alerts/{alert_id}/resolve")
    again = client.post(f"/api/alerts/{alert_id}/acknowledge")

    assert acked.status_code == 200
    assert acked.json()["acknowledgedBy"] == "alice"
    assert resolved.json()["status"] == "resolved"
    assert again.status_code == 409
    assert again.json()["success"] is False


def test_alert_queries(client, engine):
    _seed(client, engine, _payment_outage())
    client.post("/api/alerts/evaluate")

    recent = client.get("/api/alerts").json()
    active = client.get("/api/alerts/active").json()
    by_type = client.get("/api/alerts/type/HIGH_VALUE_ERROR").json()
    stats = client.get("/api/alerts/stats").json()

    assert {a["type"] for a in recent} == {"CRITICAL_ENDPOINT_FAILURE", "HIGH_VALUE_ERROR", "HIGH_USER_IMPACT"}
    assert len(active) == 3
    assert len(by_type) == 1
    assert stats["total"] == 3
    assert client.get("/api/alerts/type/NOT_A_TYPE").status_code == 400


def test_unknown_alert_is_404(client):
    resp = client.post("/api/alerts/alert_missing/resolve")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Alert not found: alert_missing"}


def test_search(client, engine):
    _seed(client, engine, _payment_outage())

    resp = client.post("/api/search", json={"query": "Why are payments failing?"})
    trending = client.get("/api/search/trending").json()

    assert resp.status_code == 200
    body = resp.json()
    assert "CARD_DECLINED" in body["answer"]
    assert body["totalLogsAnalyzed"] == 6
    assert trending["hours"] == 24


def test_search_requires_query(client):
    assert client.post("/api/search", json={"query": ""}).status_code == 400


def test_timeline_routes(client, engine):
    _seed(client, engine, _payment_outage())

    session = client.get("/api/timeline/session/session_0")
    blast = client.get("/api/timeline/blast-radius/CARD_DECLINED").json()
    sessions = client.get("/api/timeline/recent-sessions", params={"limit": 3}).json()

    assert session.status_code == 200
    assert session.json()["errorOccurred"] is True
    assert blast["affectedUsers"] == 6
    assert len(sessions) == 3
    assert client.get("/api/timeline/session/unknown").status_code == 404


def test_copilot_and_suggestions(client, engine):
    empty = client.get("/api/search/copilot").json()
    _seed(client, engine, _payment_outage())
    client.post("/api/ai-logs/analyze")

    copilot = client.get("/api/search/copilot", params={"severity": "high", "limit": 4})
    suggestions = client.get("/api/search/suggestions").json()

    assert empty["message"] == "No analyzed logs available yet"
    assert copilot.status_code == 200
    body = copilot.json()
    assert len(body["analyzedLogs"]) == 4
    assert body["keyProblems"]
    assert body["fallbackUsed"] is False
    assert suggestions["success"] is True
    assert suggestions["suggestions"][0] == "Tell me about Payment_Gateway_Errors"
    assert client.get("/api/search/copilot", params={"severity": "urgent"}).status_code == 400
