"""In-process stores for tests, dry runs and single-node deployments.

Implements LogStore, AnalyzedLogStore and AlertStore. Each store guards its
dict with an ``asyncio.Lock`` so concurrent tasks see consistent snapshots.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime

from pipeline.errors import StoreWriteError
from schemas.alerts import Alert, AlertQuery
from schemas.analysis import SEVERITY_RANK, AnalyzedLog, AnalyzedLogQuery, ClusterSummary
from schemas.events import LogEvent, LogQuery, LogStats, as_utc


class MemoryLogStore:
    """Raw log events keyed by ``log_id``. Implements LogStore protocol.

    ``find_unanalyzed`` excludes ids present in ``analyzed``; without one every
    event counts as unanalysed.
    """

    def __init__(self, analyzed: MemoryAnalyzedLogStore | None = None) -> None:
        self._logs: dict[str, LogEvent] = {}
        self.analyzed = analyzed
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._logs)

    async def insert_many(self, events: list[LogEvent]) -> int:
        async with self._lock:
            seen: set[str] = set()
            duplicates: list[str] = []
            for e in events:
                if e.log_id in self._logs or e.log_id in seen:
                    duplicates.append(e.log_id)
                seen.add(e.log_id)
            if duplicates:
                raise StoreWriteError(
                    f"bulk insert rejected: {len(duplicates)} duplicate log id(s)",
                    failed_ids=duplicates,
                )
            for e in events:
                self._logs[e.log_id] = e.model_copy()
        return len(events)

    async def insert_one(self, event: LogEvent) -> None:
        async with self._lock:
            if event.log_id in self._logs:
                raise StoreWriteError(f"duplicate log id {event.log_id}", failed_ids=[event.log_id])
            self._logs[event.log_id] = event.model_copy()

    def _select(self, query: LogQuery) -> list[LogEvent]:
        matched = [e for e in self._logs.values() if query.matches(e)]
        matched.sort(key=lambda e: e.timestamp, reverse=query.sort == "newest")
        return matched

    async def find(self, query: LogQuery) -> list[LogEvent]:
        async with self._lock:
            matched = self._select(query)
        end = query.skip + query.limit if query.limit is not None else None
        return [e.model_copy() for e in matched[query.skip:end]]

    async def find_unanalyzed(self, limit: int) -> list[LogEvent]:
        done = await self.analyzed.analyzed_log_ids() if self.analyzed is not None else set()
        async with self._lock:
            pending = [e for e in self._logs.values() if e.log_id not in done]
        pending.sort(key=lambda e: e.timestamp, reverse=True)
        return [e.model_copy() for e in pending[:limit]]

    async def count(self, query: LogQuery) -> int:
        async with self._lock:
            return sum(1 for e in self._logs.values() if query.matches(e))

    async def stats(self) -> LogStats:
        async with self._lock:
            events = list(self._logs.values())
        by_level = Counter(e.level for e in events)
        errors = sorted((e for e in events if e.is_error), key=lambda e: e.timestamp, reverse=True)
        return LogStats(
            total=len(events),
            anomalies=sum(1 for e in events if e.anomaly_detected),
            by_level=dict(by_level),
            recent_errors=[e.model_copy() for e in errors[:10]],
        )

    async def mark_anomalies(self, log_ids: list[str]) -> int:
        updated = 0
        async with self._lock:
            for log_id in log_ids:
                event = self._logs.get(log_id)
                if event is not None and not event.anomaly_detected:
                    self._logs[log_id] = event.model_copy(update={"anomaly_detected": True})
                    updated += 1
        return updated

    async def delete_older_than(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        async with self._lock:
            stale = [k for k, e in self._logs.items() if e.timestamp < cutoff]
            for k in stale:
                del self._logs[k]
        return len(stale)


class MemoryAnalyzedLogStore:
    """Analysed logs in insertion order. Implements AnalyzedLogStore protocol."""

    def __init__(self) -> None:
        self._rows: list[AnalyzedLog] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rows)

    async def analyzed_log_ids(self) -> set[str]:
        async with self._lock:
            return {r.original_log_id for r in self._rows}

    async def insert_one(self, log: AnalyzedLog) -> None:
        async with self._lock:
            self._rows.append(log.model_copy())

    def _select(self, query: AnalyzedLogQuery) -> list[AnalyzedLog]:
        matched = [r for r in self._rows if query.matches(r)]
        if query.sort == "score":
            matched.sort(key=lambda r: (r.anomaly_score, r.timestamp), reverse=True)
        else:
            matched.sort(key=lambda r: r.timestamp, reverse=True)
        return matched

    async def find(self, query: AnalyzedLogQuery) -> list[AnalyzedLog]:
        async with self._lock:
            matched = self._select(query)
        end = query.skip + query.limit if query.limit is not None else None
        return [r.model_copy() for r in matched[query.skip:end]]

    async def count(self, query: AnalyzedLogQuery) -> int:
        async with self._lock:
            return sum(1 for r in self._rows if query.matches(r))

    async def find_by_original_ids(self, log_ids: list[str]) -> list[AnalyzedLog]:
        wanted = set(log_ids)
        async with self._lock:
            return [r.model_copy() for r in self._rows if r.original_log_id in wanted]

    async def set_cluster_explanation(self, cluster_name: str, explanation: str) -> int:
        updated = 0
        async with self._lock:
            for i, row in enumerate(self._rows):
                if row.cluster_name == cluster_name and not row.is_explained:
                    self._rows[i] = row.model_copy(
                        update={"ai_explanation": explanation, "is_explained": True}
                    )
                    updated += 1
        return updated

    async def cluster_summaries(
        self,
        since: datetime | None = None,
        anomaly_only: bool = False,
    ) -> list[ClusterSummary]:
        async with self._lock:
            rows = [
                r for r in self._rows
                if (since is None or r.timestamp >= as_utc(since))
                and (not anomaly_only or r.anomaly_detected)
            ]
        groups: dict[str, list[AnalyzedLog]] = {}
        for r in rows:
            groups.setdefault(r.cluster_name, []).append(r)

        summaries = [
            ClusterSummary(
                cluster_name=name,
                count=len(members),
                avg_anomaly_score=round(sum(m.anomaly_score for m in members) / len(members), 4),
                max_severity=max((m.severity for m in members), key=SEVERITY_RANK.__getitem__),
                latest_occurrence=max(m.timestamp for m in members),
                root_cause=members[0].root_cause,
            )
            for name, members in groups.items()
        ]
        summaries.sort(key=lambda s: s.avg_anomaly_score, reverse=True)
        return summaries

    async def delete_older_than(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        async with self._lock:
            before = len(self._rows)
            self._rows = [r for r in self._rows if r.timestamp >= cutoff]
            return before - len(self._rows)


class MemoryAlertStore:
    """Alerts keyed by ``alert_id``. Implements AlertStore protocol."""

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._alerts)

    async def insert(self, alert: Alert) -> None:
        async with self._lock:
            if alert.alert_id in self._alerts:
                raise StoreWriteError(f"duplicate alert id {alert.alert_id}", failed_ids=[alert.alert_id])
            self._alerts[alert.alert_id] = alert.model_copy()

    async def get(self, alert_id: str) -> Alert | None:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.model_copy() if alert is not None else None

    async def update(self, alert: Alert) -> None:
        async with self._lock:
            if alert.alert_id not in self._alerts:
                raise StoreWriteError(f"unknown alert id {alert.alert_id}", failed_ids=[alert.alert_id])
            self._alerts[alert.alert_id] = alert.model_copy()

    async def find(self, query: AlertQuery) -> list[Alert]:
        async with self._lock:
            matched = [a for a in self._alerts.values() if query.matches(a)]
        matched.sort(key=lambda a: a.created_at, reverse=True)
        if query.limit is not None:
            matched = matched[: query.limit]
        return [a.model_copy() for a in matched]
