"""BigQuery-backed log, analysed-log and alert stores.

Rows still in the streaming buffer reject UPDATE and DELETE, so mutable state
is appended and resolved at read time:

- an alert transition appends a new version of the alert row; reads keep the
  latest version per ``alert_id``;
- a cluster explanation is a row in its own table, joined onto the analysed
  logs of that cluster stored before it;
- a raw log's ``anomaly_detected`` flag is derived from its analysed row.

Only retention issues DML, and only against old partitions. The BigQuery
client is synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any

from google.cloud import bigquery

from observability.logger import get_logger
from pipeline.errors import StoreWriteError
from schemas.alerts import Alert, AlertQuery
from schemas.analysis import AnalyzedLog, AnalyzedLogQuery, ClusterSummary
from schemas.events import LogEvent, LogQuery, LogStats, as_utc, utcnow

log = get_logger(__name__)

_LOG_JSON_FIELDS = ("details",)
_ALERT_JSON_FIELDS = ("affected_endpoints", "top_errors", "runbook", "metadata")

# Tie-break for alert versions written within the same clock tick
_ALERT_STATUS_RANK = "CASE status WHEN 'resolved' THEN 2 WHEN 'acknowledged' THEN 1 ELSE 0 END"


def _to_row(model: Any, json_fields: tuple[str, ...] = ()) -> dict[str, Any]:
    row = model.model_dump(mode="json", by_alias=False)
    for name in json_fields:
        row[name] = json.dumps(row.get(name))
    return row


def _from_row(row: bigquery.Row, json_fields: tuple[str, ...] = ()) -> dict[str, Any]:
    data = dict(row.items())
    for name in json_fields:
        value = data.get(name)
        if isinstance(value, str):
            try:
                data[name] = json.loads(value)
            except json.JSONDecodeError:
                data[name] = None
        if data.get(name) is None:
            data.pop(name, None)
    return data


class _BigQueryTable:
    def __init__(self, client: bigquery.Client, table_id: str) -> None:
        self._client = client
        self.table_id = table_id

    def _query_sync(
        self, sql: str, params: list[Any]
    ) -> tuple[list[bigquery.Row], int | None]:
        job = self._client.query(sql, job_config=bigquery.QueryJobConfig(query_parameters=params))
        rows = list(job.result())
        return rows, job.num_dml_affected_rows

    async def _query(self, sql: str, params: list[Any] | None = None) -> list[bigquery.Row]:
        rows, _ = await asyncio.to_thread(self._query_sync, sql, params or [])
        return rows

    async def _dml(self, sql: str, params: list[Any] | None = None) -> int:
        _, affected = await asyncio.to_thread(self._query_sync, sql, params or [])
        return affected or 0

    async def _insert(
        self, rows: list[dict[str, Any]], row_ids: list[str], table_id: str | None = None
    ) -> list[dict]:
        return await asyncio.to_thread(
            self._client.insert_rows_json, table_id or self.table_id, rows, row_ids=row_ids
        )


def _log_filters(query: LogQuery) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if query.levels is not None:
        clauses.append("level IN UNNEST(@levels)")
        params.append(bigquery.ArrayQueryParameter("levels", "STRING", list(query.levels)))
    if query.start is not None:
        clauses.append("timestamp >= @start")
        params.append(bigquery.ScalarQueryParameter("start", "TIMESTAMP", as_utc(query.start)))
    if query.end is not None:
        op = "<=" if query.end_inclusive else "<"
        clauses.append(f"timestamp {op} @end")
        params.append(bigquery.ScalarQueryParameter("end", "TIMESTAMP", as_utc(query.end)))
    if query.anomaly_only:
        clauses.append("anomaly_detected = TRUE")
    if query.session_id is not None:
        clauses.append("session_id = @session_id")
        params.append(bigquery.ScalarQueryParameter("session_id", "STRING", query.session_id))
    if query.error_code is not None:
        clauses.append("error_code = @error_code")
        params.append(bigquery.ScalarQueryParameter("error_code", "STRING", query.error_code))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def _page(skip: int, limit: int | None) -> str:
    if limit is None:
        return f"OFFSET {skip}" if skip else ""
    return f"LIMIT {int(limit)} OFFSET {int(skip)}"


class BigQueryLogStore(_BigQueryTable):
    """Raw log events. Implements LogStore protocol."""

    def __init__(self, client: bigquery.Client, table_id: str, analyzed_table_id: str) -> None:
        super().__init__(client, table_id)
        self.analyzed_table_id = analyzed_table_id

    @property
    def _source(self) -> str:
        return (
            f"(SELECT l.* REPLACE ("
            f"IFNULL(l.anomaly_detected, FALSE) OR a.original_log_id IS NOT NULL AS anomaly_detected) "
            f"FROM `{self.table_id}` AS l LEFT JOIN "
            f"(SELECT DISTINCT original_log_id FROM `{self.analyzed_table_id}` "
            f"WHERE anomaly_detected) AS a ON a.original_log_id = l.log_id)"
        )

    async def insert_many(self, events: list[LogEvent]) -> int:
        if not events:
            return 0
        rows = [_to_row(e, _LOG_JSON_FIELDS) for e in events]
        # insertId gives best-effort de-duplication when a failed batch is retried row by row
        errors = await self._insert(rows, [e.log_id for e in events])
        if errors:
            failed = [events[err["index"]].log_id for err in errors if "index" in err]
            raise StoreWriteError(
                f"bigquery rejected {len(failed)} of {len(events)} rows", failed_ids=failed
            )
        log.info("bq.logs.insert_many", count=len(events))
        return len(events)

    async def insert_one(self, event: LogEvent) -> None:
        await self.insert_many([event])

    async def find(self, query: LogQuery) -> list[LogEvent]:
        where, params = _log_filters(query)
        order = "DESC" if query.sort == "newest" else "ASC"
        sql = (
            f"SELECT * FROM {self._source} {where} "
            f"ORDER BY timestamp {order} {_page(query.skip, query.limit)}"
        )
        rows = await self._query(sql, params)
        return [LogEvent.model_validate(_from_row(r, _LOG_JSON_FIELDS)) for r in rows]

    async def find_unanalyzed(self, limit: int) -> list[LogEvent]:
        sql = (
            f"SELECT * FROM `{self.table_id}` WHERE log_id NOT IN ("
            f"SELECT original_log_id FROM `{self.analyzed_table_id}` "
            f"WHERE original_log_id IS NOT NULL) "
            f"ORDER BY timestamp DESC LIMIT {int(limit)}"
        )
        rows = await self._query(sql)
        return [LogEvent.model_validate(_from_row(r, _LOG_JSON_FIELDS)) for r in rows]

    async def count(self, query: LogQuery) -> int:
        where, params = _log_filters(query)
        rows = await self._query(f"SELECT COUNT(*) AS n FROM {self._source} {where}", params)
        return int(rows[0]["n"]) if rows else 0

    async def stats(self) -> LogStats:
        rows = await self._query(
            f"SELECT level, COUNT(*) AS n, COUNTIF(anomaly_detected) AS anomalies "
            f"FROM {self._source} GROUP BY level"
        )
        by_level = {r["level"]: int(r["n"]) for r in rows}
        recent = await self.find(LogQuery(levels=["ERROR", "CRITICAL"], limit=10))
        return LogStats(
            total=sum(by_level.values()),
            anomalies=sum(int(r["anomalies"]) for r in rows),
            by_level=by_level,
            recent_errors=recent,
        )

    async def mark_anomalies(self, log_ids: list[str]) -> int:
        # Reads derive the flag from the analysed rows, which are already written
        flagged = len(set(log_ids))
        log.info("bq.logs.mark_anomalies", count=flagged, mode="derived")
        return flagged

    async def delete_older_than(self, cutoff: datetime) -> int:
        deleted = await self._dml(
            f"DELETE FROM `{self.table_id}` WHERE timestamp < @cutoff",
            [bigquery.ScalarQueryParameter("cutoff", "TIMESTAMP", as_utc(cutoff))],
        )
        log.info("bq.logs.delete_older_than", deleted=deleted)
        return deleted


def _analyzed_filters(query: AnalyzedLogQuery) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if query.cluster_name is not None:
        clauses.append("cluster_name = @cluster_name")
        params.append(bigquery.ScalarQueryParameter("cluster_name", "STRING", query.cluster_name))
    if query.min_anomaly_score is not None:
        clauses.append("anomaly_score >= @min_score")
        params.append(bigquery.ScalarQueryParameter("min_score", "FLOAT64", query.min_anomaly_score))
    if query.severity is not None:
        clauses.append("severity = @severity")
        params.append(bigquery.ScalarQueryParameter("severity", "STRING", query.severity))
    if query.anomaly_only:
        clauses.append("anomaly_detected = TRUE")
    if query.start is not None:
        clauses.append("timestamp >= @start")
        params.append(bigquery.ScalarQueryParameter("start", "TIMESTAMP", as_utc(query.start)))
    if query.explained is not None:
        clauses.append("is_explained = @explained")
        params.append(bigquery.ScalarQueryParameter("explained", "BOOL", query.explained))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class BigQueryAnalyzedLogStore(_BigQueryTable):
    """AI-analysed logs plus their cluster explanations. Implements AnalyzedLogStore protocol."""

    def __init__(self, client: bigquery.Client, table_id: str, explanations_table_id: str) -> None:
        super().__init__(client, table_id)
        self.explanations_table_id = explanations_table_id

    @property
    def _source(self) -> str:
        # The earliest explanation written after a row was stored is the one it received.
        # QUALIFY needs a WHERE, GROUP BY or HAVING alongside it.
        return f"""(
            SELECT a.* REPLACE (
              IF(a.is_explained, a.ai_explanation, IFNULL(e.explanation, a.ai_explanation))
                AS ai_explanation,
              IFNULL(a.is_explained, FALSE) OR e.explanation IS NOT NULL AS is_explained
            )
            FROM `{self.table_id}` AS a
            LEFT JOIN `{self.explanations_table_id}` AS e
              ON e.cluster_name = a.cluster_name AND e.explained_at >= a.analyzed_at
            WHERE TRUE
            QUALIFY ROW_NUMBER() OVER (
              PARTITION BY a.original_log_id ORDER BY e.explained_at
            ) = 1
        )"""

    async def insert_one(self, analyzed: AnalyzedLog) -> None:
        errors = await self._insert([_to_row(analyzed)], [analyzed.original_log_id])
        if errors:
            raise StoreWriteError(
                f"bigquery rejected analysed log: {errors}", failed_ids=[analyzed.original_log_id]
            )

    async def find(self, query: AnalyzedLogQuery) -> list[AnalyzedLog]:
        where, params = _analyzed_filters(query)
        order = "anomaly_score DESC, timestamp DESC" if query.sort == "score" else "timestamp DESC"
        sql = f"SELECT * FROM {self._source} {where} ORDER BY {order} {_page(query.skip, query.limit)}"
        rows = await self._query(sql, params)
        return [AnalyzedLog.model_validate(_from_row(r)) for r in rows]

    async def count(self, query: AnalyzedLogQuery) -> int:
        where, params = _analyzed_filters(query)
        rows = await self._query(f"SELECT COUNT(*) AS n FROM {self._source} {where}", params)
        return int(rows[0]["n"]) if rows else 0

    async def find_by_original_ids(self, log_ids: list[str]) -> list[AnalyzedLog]:
        if not log_ids:
            return []
        rows = await self._query(
            f"SELECT * FROM {self._source} WHERE original_log_id IN UNNEST(@ids)",
            [bigquery.ArrayQueryParameter("ids", "STRING", log_ids)],
        )
        return [AnalyzedLog.model_validate(_from_row(r)) for r in rows]

    async def set_cluster_explanation(self, cluster_name: str, explanation: str) -> int:
        cluster = bigquery.ScalarQueryParameter("cluster_name", "STRING", cluster_name)
        rows = await self._query(
            f"SELECT COUNT(*) AS n FROM {self._source} "
            f"WHERE cluster_name = @cluster_name AND NOT is_explained",
            [cluster],
        )
        pending = int(rows[0]["n"]) if rows else 0
        if not pending:
            log.info("bq.analyzed.set_cluster_explanation", cluster=cluster_name, updated=0)
            return 0

        explained_at = utcnow().isoformat()
        errors = await self._insert(
            [{"cluster_name": cluster_name, "explanation": explanation, "explained_at": explained_at}],
            [f"{cluster_name}:{explained_at}"],
            table_id=self.explanations_table_id,
        )
        if errors:
            raise StoreWriteError(f"bigquery rejected cluster explanation: {errors}")
        log.info("bq.analyzed.set_cluster_explanation", cluster=cluster_name, updated=pending)
        return pending

    async def cluster_summaries(
        self,
        since: datetime | None = None,
        anomaly_only: bool = False,
    ) -> list[ClusterSummary]:
        clauses: list[str] = []
        params: list[Any] = []
        if since is not None:
            clauses.append("timestamp >= @since")
            params.append(bigquery.ScalarQueryParameter("since", "TIMESTAMP", as_utc(since)))
        if anomaly_only:
            clauses.append("anomaly_detected = TRUE")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT
              cluster_name,
              COUNT(*) AS count,
              ROUND(AVG(anomaly_score), 4) AS avg_anomaly_score,
              ARRAY_AGG(severity ORDER BY CASE severity
                WHEN 'critical' THEN 3 WHEN 'high' THEN 2 WHEN 'medium' THEN 1 ELSE 0 END DESC
                LIMIT 1)[OFFSET(0)] AS max_severity,
              MAX(timestamp) AS latest_occurrence,
              ANY_VALUE(root_cause) AS root_cause
            FROM {self._source}
            {where}
            GROUP BY cluster_name
            ORDER BY avg_anomaly_score DESC
        """
        rows = await self._query(sql, params)
        return [ClusterSummary.model_validate(dict(r.items())) for r in rows]

    async def delete_older_than(self, cutoff: datetime) -> int:
        params = [bigquery.ScalarQueryParameter("cutoff", "TIMESTAMP", as_utc(cutoff))]
        deleted = await self._dml(f"DELETE FROM `{self.table_id}` WHERE timestamp < @cutoff", params)
        explanations = await self._dml(
            f"DELETE FROM `{self.explanations_table_id}` WHERE explained_at < @cutoff", params
        )
        log.info("bq.analyzed.delete_older_than", deleted=deleted, explanations=explanations)
        return deleted


class BigQueryAlertStore(_BigQueryTable):
    """Versioned alerts: every write appends a row. Implements AlertStore protocol."""

    @property
    def _latest(self) -> str:
        return (
            f"(SELECT * EXCEPT (version_at, _version) FROM ("
            f"SELECT *, ROW_NUMBER() OVER (PARTITION BY alert_id "
            f"ORDER BY version_at DESC, {_ALERT_STATUS_RANK} DESC) AS _version "
            f"FROM `{self.table_id}`) WHERE _version = 1)"
        )

    async def _append(self, alert: Alert) -> None:
        row = _to_row(alert, _ALERT_JSON_FIELDS)
        row["version_at"] = utcnow().isoformat()
        errors = await self._insert([row], [f"{alert.alert_id}:{alert.status}"])
        if errors:
            raise StoreWriteError(f"bigquery rejected alert: {errors}", failed_ids=[alert.alert_id])

    async def insert(self, alert: Alert) -> None:
        await self._append(alert)

    async def get(self, alert_id: str) -> Alert | None:
        rows = await self._query(
            f"SELECT * FROM {self._latest} WHERE alert_id = @alert_id",
            [bigquery.ScalarQueryParameter("alert_id", "STRING", alert_id)],
        )
        return Alert.model_validate(_from_row(rows[0], _ALERT_JSON_FIELDS)) if rows else None

    async def update(self, alert: Alert) -> None:
        if await self.get(alert.alert_id) is None:
            raise StoreWriteError(f"unknown alert id {alert.alert_id}", failed_ids=[alert.alert_id])
        await self._append(alert)
        log.info("bq.alerts.version", alert_id=alert.alert_id, status=alert.status)

    async def find(self, query: AlertQuery) -> list[Alert]:
        clauses: list[str] = []
        params: list[Any] = []
        if query.since is not None:
            clauses.append("created_at >= @since")
            params.append(bigquery.ScalarQueryParameter("since", "TIMESTAMP", as_utc(query.since)))
        if query.status is not None:
            clauses.append("status = @status")
            params.append(bigquery.ScalarQueryParameter("status", "STRING", query.status))
        if query.type is not None:
            clauses.append("type = @type")
            params.append(bigquery.ScalarQueryParameter("type", "STRING", query.type))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM {self._latest} {where} ORDER BY created_at DESC {_page(0, query.limit)}"
        rows = await self._query(sql, params)
        return [Alert.model_validate(_from_row(r, _ALERT_JSON_FIELDS)) for r in rows]
