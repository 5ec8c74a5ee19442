"""BigQuery stores against a recording client: no statement may UPDATE streamed rows."""

from __future__ import annotations

from typing import Any

import pytest
from google.cloud import bigquery

from pipeline.errors import StoreWriteError
from providers.bigquery_store import (
    _ALERT_JSON_FIELDS,
    BigQueryAlertStore,
    BigQueryAnalyzedLogStore,
    BigQueryLogStore,
    _to_row,
)
from schemas.alerts import Alert

LOGS = "proj.logpulse.logs"
ANALYZED = "proj.logpulse.analyzed_logs"
EXPLANATIONS = "proj.logpulse.cluster_explanations"
ALERTS = "proj.logpulse.alerts"


def _row(**fields: Any) -> bigquery.Row:
    return bigquery.Row(tuple(fields.values()), {name: i for i, name in enumerate(fields)})


class _Job:
    def __init__(self, rows: list[bigquery.Row]) -> None:
        self._rows = rows
        self.num_dml_affected_rows = None

    def result(self) -> list[bigquery.Row]:
        return self._rows


class RecordingClient:
    """Answers queries from a script and records every statement and streamed row."""

    def __init__(self, results: list[list[bigquery.Row]] | None = None) -> None:
        self.results = list(results or [])
        self.queries: list[tuple[str, bigquery.QueryJobConfig]] = []
        self.inserted: list[tuple[str, list[dict], list[str]]] = []

    def query(self, sql: str, job_config: bigquery.QueryJobConfig) -> _Job:
        self.queries.append((sql, job_config))
        return _Job(self.results.pop(0) if self.results else [])

    def insert_rows_json(self, table: str, rows: list[dict], row_ids: list[str]) -> list[dict]:
        self.inserted.append((table, rows, row_ids))
        return []

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.queries]


@pytest.fixture
def alert() -> Alert:
    return Alert(
        alert_id="alert_1_endpoint_abc123",
        type="CRITICAL_ENDPOINT_FAILURE",
        severity="CRITICAL",
        title="Critical endpoint failing",
        description="POST /payment/process failed 6 times",
        affected_endpoints=["POST /payment/process"],
    )


async def test_alert_transition_appends_a_new_version(alert):
    client = RecordingClient([[_row(**_to_row(alert, _ALERT_JSON_FIELDS))]])
    store = BigQueryAlertStore(client, ALERTS)

    await store.update(alert.transition_to("acknowledged", by="alice"))

    assert not any("UPDATE" in sql for sql in client.statements)
    table, rows, row_ids = client.inserted[-1]
    assert table == ALERTS
    assert rows[0]["status"] == "acknowledged"
    assert rows[0]["acknowledged_by"] == "alice"
    assert "version_at" in rows[0]
    assert row_ids == [f"{alert.alert_id}:acknowledged"]


async def test_update_of_unknown_alert_raises(alert):
    client = RecordingClient([[]])
    store = BigQueryAlertStore(client, ALERTS)

    with pytest.raises(StoreWriteError):
        await store.update(alert.transition_to("resolved"))

    assert client.inserted == []


async def test_alert_reads_keep_the_latest_version(alert):
    client = RecordingClient([[_row(**_to_row(alert, _ALERT_JSON_FIELDS))]])
    store = BigQueryAlertStore(client, ALERTS)

    found = await store.get(alert.alert_id)

    assert found.alert_id == alert.alert_id
    assert found.affected_endpoints == ["POST /payment/process"]
    sql = client.statements[0]
    assert "PARTITION BY alert_id" in sql
    assert "_version = 1" in sql


async def test_cluster_explanation_is_appended_not_updated():
    client = RecordingClient([[_row(n=3)]])
    store = BigQueryAnalyzedLogStore(client, ANALYZED, EXPLANATIONS)

    updated = await store.set_cluster_explanation("Payment_Gateway_Errors", "ROOT CAUSE: gateway down")

    assert updated == 3
    assert not any("UPDATE" in sql for sql in client.statements)
    table, rows, _ = client.inserted[-1]
    assert table == EXPLANATIONS
    assert rows[0]["cluster_name"] == "Payment_Gateway_Errors"
    assert rows[0]["explanation"] == "ROOT CAUSE: gateway down"


async def test_explained_cluster_writes_nothing():
    client = RecordingClient([[_row(n=0)]])
    store = BigQueryAnalyzedLogStore(client, ANALYZED, EXPLANATIONS)

    assert await store.set_cluster_explanation("Payment_Gateway_Errors", "again") == 0
    assert client.inserted == []


async def test_analysed_reads_join_explanations():
    client = RecordingClient([[]])
    store = BigQueryAnalyzedLogStore(client, ANALYZED, EXPLANATIONS)

    await store.find_by_original_ids(["log_1"])

    assert f"LEFT JOIN `{EXPLANATIONS}`" in client.statements[0]


async def test_unanalyzed_selection_is_an_anti_join_without_id_parameters():
    client = RecordingClient([[]])
    store = BigQueryLogStore(client, LOGS, ANALYZED)

    assert await store.find_unanalyzed(50) == []

    sql, job_config = client.queries[0]
    assert f"NOT IN (SELECT original_log_id FROM `{ANALYZED}`" in sql
    assert "LIMIT 50" in sql
    assert job_config.query_parameters == []


async def test_anomaly_flags_are_derived_without_dml():
    client = RecordingClient()
    store = BigQueryLogStore(client, LOGS, ANALYZED)

    assert await store.mark_anomalies(["log_1", "log_2", "log_1"]) == 2
    assert client.queries == []
