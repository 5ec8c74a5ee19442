"""Store protocols for raw logs, analysed logs and alerts (in-memory or BigQuery).

Stores are shared by every component and must tolerate concurrent appends
and reads; the core adds no locking of its own around them.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from schemas.alerts import Alert, AlertQuery
    from schemas.analysis import AnalyzedLog, AnalyzedLogQuery, ClusterSummary
    from schemas.events import LogEvent, LogQuery, LogStats


@runtime_checkable
class LogStore(Protocol):
    """Append-mostly collection of raw log events."""

    async def insert_many(self, events: list[LogEvent]) -> int:
        """Unordered bulk insert. Raises StoreWriteError if the batch is rejected."""
        ...

    async def insert_one(self, event: LogEvent) -> None: ...

    async def find(self, query: LogQuery) -> list[LogEvent]: ...

    async def find_unanalyzed(self, limit: int) -> list[LogEvent]:
        """Newest events that have no analysed row yet. The store does the exclusion."""
        ...

    async def count(self, query: LogQuery) -> int: ...

    async def stats(self) -> LogStats: ...

    async def mark_anomalies(self, log_ids: list[str]) -> int:
        """Flag events as anomalous. A store may derive the flag from analysed rows instead."""
        ...

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete events with timestamp strictly before ``cutoff``."""
        ...


@runtime_checkable
class AnalyzedLogStore(Protocol):
    """AI-analysed logs, 1:1 with raw logs via ``original_log_id``."""

    async def insert_one(self, log: AnalyzedLog) -> None: ...

    async def find(self, query: AnalyzedLogQuery) -> list[AnalyzedLog]: ...

    async def count(self, query: AnalyzedLogQuery) -> int: ...

    async def find_by_original_ids(self, log_ids: list[str]) -> list[AnalyzedLog]: ...

    async def set_cluster_explanation(self, cluster_name: str, explanation: str) -> int:
        """Write ``explanation`` on every unexplained log of the cluster; return rows updated."""
        ...

    async def cluster_summaries(self, since: datetime | None = None, anomaly_only: bool = False) -> list[ClusterSummary]: ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...


@runtime_checkable
class AlertStore(Protocol):
    """Persisted alerts. Never auto-deleted."""

    async def insert(self, alert: Alert) -> None: ...

    async def get(self, alert_id: str) -> Alert | None: ...

    async def update(self, alert: Alert) -> None: ...

    async def find(self, query: AlertQuery) -> list[Alert]:
        """Matching alerts, newest first."""
        ...
