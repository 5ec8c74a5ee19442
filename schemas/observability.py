"""Observability schemas for oracle calls and analysis passes."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from schemas.events import utcnow


class LLMCallRecord(BaseModel):
    """Record of a single oracle call for cost and performance tracking."""

    model_config = ConfigDict(protected_namespaces=())

    call_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=utcnow)
    step: str = ""  # "analyze_batch", "explain_cluster", "search"
    provider: str = ""  # "anthropic", "openai", "dummy"
    model_id: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    latency_ms: float = 0.0
    success: bool = True
    parse_success: bool = True
    fallback_used: bool = False
    error_message: str = ""


class AnalysisPassRecord(BaseModel):
    """Summary of one traced run (analysis pass, search call)."""

    run_id: str = Field(default_factory=lambda: str(uuid4()))
    kind: str = "analysis"
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    logs_selected: int = 0
    logs_persisted: int = 0
    logs_failed: int = 0
    anomalies_detected: int = 0
    clusters: int = 0
    clusters_enriched: int = 0
    total_llm_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0
    avg_latency_ms: float = 0.0
    fallback_rate: float = 0.0
    prompt_version: str = ""
    llm_calls: list[LLMCallRecord] = Field(default_factory=list)
