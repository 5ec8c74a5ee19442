"""Schemas for natural-language search, copilot summaries, trending issues and session timelines."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from schemas.analysis import AnalyzedLog
from schemas.events import LogEvent, LogLevel, WireModel, utcnow


class SearchResult(WireModel):
    success: bool = True
    query: str
    answer: str
    root_cause: str = ""
    impact: str = ""
    suggested_fixes: list[str] = Field(default_factory=list)
    timeline: str = ""
    relevant_logs: list[LogEvent] = Field(default_factory=list)
    total_logs_analyzed: int = 0
    fallback_used: bool = False
    analysis_time: datetime = Field(default_factory=utcnow)


class TrendingIssue(WireModel):
    cluster_name: str
    count: int
    avg_anomaly_score: float
    latest_occurrence: datetime
    severity: str
    root_cause: str = ""


class TrendingResult(WireModel):
    hours: int
    trending: list[TrendingIssue] = Field(default_factory=list)


class CopilotResult(WireModel):
    success: bool = True
    message: str = ""
    summary: str = ""
    key_problems: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    analyzed_logs: list[AnalyzedLog] = Field(default_factory=list)
    fallback_used: bool = False
    generated_at: datetime = Field(default_factory=utcnow)


class SearchSuggestions(WireModel):
    success: bool = True
    suggestions: list[str] = Field(default_factory=list)


class TimelineEntry(WireModel):
    timestamp: datetime
    action: str
    level: LogLevel
    message: str
    endpoint: str | None = None
    city: str | None = None
    response_time: float | None = None
    error_code: str | None = None
    analysis: AnalyzedLog | None = None


class ErrorAnalysis(WireModel):
    what_happened: str
    why_it_happened: str | None = None
    how_to_fix: str | None = None
    user_impact: str
    leading_actions: list[str] = Field(default_factory=list)


class SessionTimeline(WireModel):
    session_id: str
    total_events: int
    duration: str
    user_location: str | None = None
    error_occurred: bool = False
    error_timestamp: datetime | None = None
    timeline: list[TimelineEntry] = Field(default_factory=list)
    error_analysis: ErrorAnalysis | None = None


class PeakMinute(WireModel):
    time: str
    count: int


class BlastRadius(WireModel):
    error_code: str
    hours: int
    affected_users: int = 0
    affected_cities: list[str] = Field(default_factory=list)
    affected_endpoints: list[str] = Field(default_factory=list)
    total_occurrences: int = 0
    peak_time: PeakMinute | None = None
    per_minute: dict[str, int] = Field(default_factory=dict)
    estimated_revenue_loss: float = 0.0


class SessionErrorSample(WireModel):
    level: LogLevel
    message: str
    timestamp: datetime


class ErrorSession(WireModel):
    session_id: str
    user_id: str | None = None
    city: str | None = None
    first_error: datetime
    error_count: int = 0
    errors: list[SessionErrorSample] = Field(default_factory=list)
