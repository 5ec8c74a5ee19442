"""AI-analysed log schemas and analysis/enrichment results."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from schemas.events import LogEvent, LogLevel, WireModel, utcnow
from schemas.llm_responses import LogAnalysis, Severity

SEVERITY_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class AnalyzedLog(WireModel):
    """One LogEvent enriched with oracle findings. 1:1 with its original log."""

    original_log_id: str

    # Snapshot of the original log
    timestamp: datetime
    level: LogLevel
    message: str
    service: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    endpoint: str | None = None
    error_code: str | None = None
    city: str | None = None

    # Analysis
    anomaly_detected: bool = False
    anomaly_score: float = Field(default=0.0, ge=0.0, le=1.0)
    severity: Severity = "low"
    category: str = "other"
    root_cause: str = ""
    ai_explanation: str | None = None
    suggested_fix: str = ""
    is_explained: bool = False

    # Clustering
    cluster_id: str = "unclustered"
    cluster_name: str = "Unclustered"
    similar_logs_count: int = 1

    # Metadata
    analysis_method: Literal["llm", "fallback"] = "llm"
    analyzed_at: datetime = Field(default_factory=utcnow)
    ai_model: str = ""

    @classmethod
    def from_analysis(
        cls,
        event: LogEvent,
        analysis: LogAnalysis,
        *,
        method: Literal["llm", "fallback"],
        ai_model: str,
    ) -> AnalyzedLog:
        return cls(
            original_log_id=event.log_id,
            timestamp=event.timestamp,
            level=event.level,
            message=event.message,
            service=event.service,
            user_id=event.user_id,
            session_id=event.session_id,
            request_id=event.request_id,
            endpoint=event.endpoint,
            error_code=event.error_code,
            city=event.city,
            anomaly_detected=analysis.anomaly_detected,
            anomaly_score=analysis.anomaly_score,
            severity=analysis.severity,
            category=analysis.category,
            root_cause=analysis.root_cause,
            ai_explanation=analysis.ai_explanation,
            suggested_fix=analysis.suggested_fix,
            cluster_id=analysis.cluster_id,
            cluster_name=analysis.cluster_name,
            similar_logs_count=analysis.similar_logs_count,
            analysis_method=method,
            ai_model=ai_model,
        )


class AnalyzedLogQuery(BaseModel):
    cluster_name: str | None = None
    min_anomaly_score: float | None = None
    severity: Severity | None = None
    anomaly_only: bool = False
    start: datetime | None = None
    explained: bool | None = None
    sort: Literal["score", "newest"] = "score"
    skip: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)

    def matches(self, log: AnalyzedLog) -> bool:
        if self.cluster_name is not None and log.cluster_name != self.cluster_name:
            return False
        if self.min_anomaly_score is not None and log.anomaly_score < self.min_anomaly_score:
            return False
        if self.severity is not None and log.severity != self.severity:
            return False
        if self.anomaly_only and not log.anomaly_detected:
            return False
        if self.start is not None and log.timestamp < self.start:
            return False
        if self.explained is not None and log.is_explained != self.explained:
            return False
        return True


class AnalyzedLogPage(WireModel):
    page: int
    limit: int
    total: int
    logs: list[AnalyzedLog] = Field(default_factory=list)


class ClusterSummary(WireModel):
    cluster_name: str
    count: int
    avg_anomaly_score: float
    max_severity: Severity
    latest_occurrence: datetime
    root_cause: str = ""


class ClusterExplanationResult(WireModel):
    cluster_name: str
    explanation: str
    cached: bool


class EnrichmentResult(WireModel):
    cluster_name: str
    logs_updated: int = 0
    explanation: str | None = None
    oracle_called: bool = False
    fallback_used: bool = False


class AnalysisPassResult(WireModel):
    run_id: str
    processed: int = 0
    persisted: int = 0
    failed: int = 0
    anomalies: int = 0
    clusters: int = 0
    clusters_enriched: list[str] = Field(default_factory=list)
    fallback_used: bool = False
    fallback_reason: Literal["oracle_unavailable", "parse_error"] | None = None
