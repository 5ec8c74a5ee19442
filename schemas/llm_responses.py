"""Pydantic models for structured oracle responses.

Each response has exactly one accepted shape. A payload that does not
validate raises ``pydantic.ValidationError``, which callers treat as the
single "malformed response" signal and answer with their fallback.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Severity = Literal["low", "medium", "high", "critical"]


class LogAnalysis(BaseModel):
    """Oracle output for one log, aligned to the input by ``log_index``."""

    log_index: int = Field(ge=0, description="Index of the analysed log in the request.")
    anomaly_detected: bool = Field(default=False, description="True if the log is anomalous.")
    anomaly_score: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Anomaly score from 0.0 (normal) to 1.0 (certainly anomalous).",
    )
    severity: Severity = Field(default="low", description="Severity tier.")
    category: str = Field(
        default="other",
        max_length=100,
        description="Failure category, e.g. 'payment_failure', 'database_error', 'performance'.",
    )
    root_cause: str = Field(default="", max_length=500, description="Root cause in one line.")
    ai_explanation: str | None = Field(
        default=None,
        max_length=2000,
        description="What happened, why and with what impact, in 3-5 sentences.",
    )
    suggested_fix: str = Field(default="", max_length=500, description="Actionable fix in one line.")
    cluster_id: str = Field(default="unclustered", max_length=200)
    cluster_name: str = Field(default="Unclustered", max_length=200)
    similar_logs_count: int = Field(default=1, ge=0)

    @field_validator("severity", mode="before")
    @classmethod
    def lower_severity(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("cluster_id", "cluster_name")
    @classmethod
    def cluster_not_blank(cls, v: str) -> str:
        v = v.strip()
        return v or "unclustered"

    @model_validator(mode="after")
    def anomaly_flag_follows_score(self) -> LogAnalysis:
        if self.anomaly_score >= 0.7 and not self.anomaly_detected:
            self.anomaly_detected = True
        return self


class BatchAnalysisResponse(BaseModel):
    """Oracle output for a whole batch: ``{"analyses": [...]}``."""

    analyses: list[LogAnalysis]

    def by_index(self) -> dict[int, LogAnalysis]:
        """First analysis per log index; later duplicates are ignored."""
        indexed: dict[int, LogAnalysis] = {}
        for analysis in self.analyses:
            indexed.setdefault(analysis.log_index, analysis)
        return indexed


class ClusterExplanation(BaseModel):
    """Oracle output: cluster-level root cause / impact / fix narrative."""

    explanation: str = Field(
        min_length=1,
        max_length=2500,
        description="Root cause, impact and suggested fix, under 200 words.",
    )

    @field_validator("explanation")
    @classmethod
    def strip_explanation(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("explanation must not be blank")
        return v


class SearchAnswer(BaseModel):
    """Oracle output for a natural-language question about recent logs."""

    answer: str = Field(min_length=1, max_length=2000)
    root_cause: str = Field(default="", max_length=1000)
    impact: str = Field(default="", max_length=1000)
    suggested_fixes: list[str] = Field(default_factory=list, max_length=10)
    timeline: str = Field(default="", max_length=500)
    relevant_error_types: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("suggested_fixes", "relevant_error_types")
    @classmethod
    def drop_blank_items(cls, v: list[str]) -> list[str]:
        return [item.strip()[:300] for item in v if item.strip()]


class CopilotSummary(BaseModel):
    """Oracle output: plain-language digest of the latest analysed logs."""

    summary: str = Field(min_length=1, max_length=2000)
    key_problems: list[str] = Field(default_factory=list, max_length=10)
    next_steps: list[str] = Field(default_factory=list, max_length=10)

    @field_validator("key_problems", "next_steps")
    @classmethod
    def drop_blank_items(cls, v: list[str]) -> list[str]:
        return [item.strip()[:300] for item in v if item.strip()]
