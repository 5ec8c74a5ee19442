"""Run tracing: run_id, step timings and counters for analysis passes and searches."""

from __future__ import annotations

import time
from uuid import uuid4

from observability.logger import get_logger
from observability.metrics import MetricsCollector
from schemas.events import utcnow
from schemas.observability import AnalysisPassRecord

log = get_logger(__name__)


class PassTracer:
    """Tracks a single traced run with timing and oracle metrics."""

    def __init__(self, kind: str = "analysis", prompt_version: str = "v1") -> None:
        self.run_id = str(uuid4())
        self.kind = kind
        self.prompt_version = prompt_version
        self.metrics = MetricsCollector()
        self._started_at = utcnow()
        self._step_starts: dict[str, float] = {}
        self.step_timings: dict[str, float] = {}

        self.logs_selected = 0
        self.logs_persisted = 0
        self.logs_failed = 0
        self.anomalies_detected = 0
        self.clusters = 0
        self.clusters_enriched = 0

    def start_step(self, step_name: str) -> None:
        self._step_starts[step_name] = time.perf_counter()
        log.debug("trace.step.start", step=step_name, run_id=self.run_id, kind=self.kind)

    def end_step(self, step_name: str) -> float:
        started = self._step_starts.pop(step_name, None)
        elapsed = (time.perf_counter() - started) * 1000 if started is not None else 0.0
        self.step_timings[step_name] = round(elapsed, 2)
        log.debug(
            "trace.step.end",
            step=step_name,
            run_id=self.run_id,
            kind=self.kind,
            latency_ms=round(elapsed, 2),
        )
        return elapsed

    def to_record(self) -> AnalysisPassRecord:
        summary = self.metrics.summary()
        return AnalysisPassRecord(
            run_id=self.run_id,
            kind=self.kind,
            started_at=self._started_at,
            finished_at=utcnow(),
            logs_selected=self.logs_selected,
            logs_persisted=self.logs_persisted,
            logs_failed=self.logs_failed,
            anomalies_detected=self.anomalies_detected,
            clusters=self.clusters,
            clusters_enriched=self.clusters_enriched,
            total_llm_calls=summary["total_calls"],
            total_input_tokens=summary["total_input_tokens"],
            total_output_tokens=summary["total_output_tokens"],
            total_cost_usd=summary["total_cost_usd"],
            avg_latency_ms=summary["avg_latency_ms"],
            fallback_rate=summary["fallback_rate"],
            prompt_version=self.prompt_version,
            llm_calls=list(self.metrics.records),
        )
