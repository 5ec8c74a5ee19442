"""AI analysis pass: classify unanalysed logs once, with a deterministic fallback.

A pass selects the newest logs that have no analysed row yet, asks the
oracle for a per-log finding, persists one AnalyzedLog per input log and
hands high-scoring clusters to the explanation enricher. An oracle that
times out, fails or answers with the wrong shape never stalls the pass:
every affected log gets a classification derived from its own level.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import TYPE_CHECKING, Literal

from pydantic import ValidationError

from config.prompts.registry import format_prompt
from observability.logger import get_logger
from observability.tracer import PassTracer
from schemas.analysis import AnalysisPassResult, AnalyzedLog
from schemas.events import LogEvent
from schemas.llm_responses import BatchAnalysisResponse, LogAnalysis

if TYPE_CHECKING:
    from pipeline.enricher import ExplanationEnricher
    from protocols.llm import LLMProvider
    from protocols.storage import AnalyzedLogStore, LogStore
    from schemas.observability import AnalysisPassRecord

log = get_logger(__name__)

FallbackReason = Literal["oracle_unavailable", "parse_error"]

_LEVEL_FALLBACK: dict[str, tuple[float, str]] = {
    "CRITICAL": (0.9, "critical"),
    "ERROR": (0.7, "high"),
}

_FALLBACK_DETAILS: dict[str, dict[str, str]] = {
    "parse_error": {
        "category": "parsing_error",
        "root_cause": "AI analysis failed - JSON parsing error",
        "cluster_id": "unknown",
        "cluster_name": "Unparsed_Logs",
    },
    "oracle_unavailable": {
        "category": "api_error",
        "root_cause": "AI analysis unavailable",
        "cluster_id": "error",
        "cluster_name": "Analysis_Failed",
    },
}


def fallback_analysis(event: LogEvent, index: int, reason: FallbackReason) -> LogAnalysis:
    """Classification derived only from the log level (CRITICAL 0.9, ERROR 0.7, else 0.1)."""
    score, severity = _LEVEL_FALLBACK.get(event.level, (0.1, "low"))
    return LogAnalysis(
        log_index=index,
        anomaly_detected=event.is_error,
        anomaly_score=score,
        severity=severity,
        suggested_fix="Check logs manually",
        similar_logs_count=1,
        **_FALLBACK_DETAILS[reason],
    )


def _output_tokens(llm: LLMProvider) -> int:
    usage = getattr(llm, "last_usage", None) or {}
    return int(usage.get("output_tokens", 0))


def format_logs_for_prompt(events: list[LogEvent]) -> str:
    """One JSON object per line, tagged with the index the oracle must echo back."""
    lines = []
    for i, e in enumerate(events):
        lines.append(
            json.dumps(
                {
                    "log_index": i,
                    "timestamp": e.timestamp.isoformat(),
                    "level": e.level,
                    "message": e.message,
                    "endpoint": e.endpoint,
                    "error_code": e.error_code,
                    "error_message": e.error_message,
                    "city": e.city,
                },
                ensure_ascii=False,
            )
        )
    return "\n".join(lines)


class LogAnalyzer:
    def __init__(
        self,
        logs: LogStore,
        analyzed: AnalyzedLogStore,
        llm: LLMProvider,
        *,
        enricher: ExplanationEnricher | None = None,
        explain_threshold: float = 0.6,
        timeout: float = 60.0,
        temperature: float = 0.1,
        max_tokens: int = 8000,
        prompt_version: str = "v1",
    ) -> None:
        self.logs = logs
        self.analyzed = analyzed
        self.llm = llm
        self.enricher = enricher
        self.explain_threshold = explain_threshold
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.prompt_version = prompt_version
        self.last_record: AnalysisPassRecord | None = None
        self._passing = asyncio.Lock()

    async def run_analysis_pass(self, batch_size: int = 50) -> AnalysisPassResult:
        # Overlapping passes would select the same unanalysed logs
        async with self._passing:
            return await self._run_pass(batch_size)

    async def _run_pass(self, batch_size: int) -> AnalysisPassResult:
        tracer = PassTracer(kind="analysis", prompt_version=self.prompt_version)
        log.info("analysis.pass.start", run_id=tracer.run_id, batch_size=batch_size)

        tracer.start_step("select")
        events = await self.logs.find_unanalyzed(batch_size)
        tracer.logs_selected = len(events)
        tracer.end_step("select")

        if not events:
            log.info("analysis.pass.noop", run_id=tracer.run_id)
            self.last_record = tracer.to_record()
            return AnalysisPassResult(run_id=tracer.run_id)

        tracer.start_step("classify")
        findings, reason = await self._classify(events, tracer)
        tracer.end_step("classify")

        tracer.start_step("persist")
        rows: list[AnalyzedLog] = []
        for event, (analysis, method) in zip(events, findings):
            row = AnalyzedLog.from_analysis(
                event, analysis, method=method, ai_model=getattr(self.llm, "model_id", "unknown")
            )
            try:
                await self.analyzed.insert_one(row)
                rows.append(row)
            except Exception as e:
                tracer.logs_failed += 1
                log.error(
                    "analysis.persist.failed",
                    run_id=tracer.run_id,
                    log_id=event.log_id,
                    error=str(e),
                )
        tracer.logs_persisted = len(rows)

        anomalous = [r.original_log_id for r in rows if r.anomaly_detected]
        tracer.anomalies_detected = len(anomalous)
        if anomalous:
            try:
                await self.logs.mark_anomalies(anomalous)
            except Exception as e:
                log.warning("analysis.mark_anomalies.failed", run_id=tracer.run_id, error=str(e))
        tracer.end_step("persist")

        tracer.start_step("enrich")
        clusters = self._clusters(rows)
        tracer.clusters = len(clusters)
        enriched = await self._enrich_hot_clusters(clusters, tracer)
        tracer.clusters_enriched = len(enriched)
        tracer.end_step("enrich")

        fallback_rows = sum(1 for _, method in findings if method == "fallback")
        self.last_record = tracer.to_record()
        log.info(
            "analysis.pass.done",
            run_id=tracer.run_id,
            processed=len(events),
            persisted=len(rows),
            failed=tracer.logs_failed,
            anomalies=len(anomalous),
            clusters=len(clusters),
            clusters_enriched=len(enriched),
            fallback_rows=fallback_rows,
            **tracer.metrics.summary(),
        )
        return AnalysisPassResult(
            run_id=tracer.run_id,
            processed=len(events),
            persisted=len(rows),
            failed=tracer.logs_failed,
            anomalies=len(anomalous),
            clusters=len(clusters),
            clusters_enriched=enriched,
            fallback_used=fallback_rows > 0,
            fallback_reason=reason,
        )

    async def _classify(
        self,
        events: list[LogEvent],
        tracer: PassTracer,
    ) -> tuple[list[tuple[LogAnalysis, Literal["llm", "fallback"]]], FallbackReason | None]:
        prompt = format_prompt(
            "analyze_batch",
            self.prompt_version,
            count=len(events),
            logs=format_logs_for_prompt(events),
        )
        provider = getattr(self.llm, "provider_name", "unknown")
        model_id = getattr(self.llm, "model_id", "unknown")

        reason: FallbackReason | None = None
        response: BatchAnalysisResponse | None = None
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.llm.generate(
                    prompt,
                    BatchAnalysisResponse,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except ValidationError as e:
            reason = "parse_error"
            log.warning("analysis.llm.parse_failed", run_id=tracer.run_id, error=str(e)[:300])
        except Exception as e:
            reason = "oracle_unavailable"
            log.warning(
                "analysis.llm.failed",
                run_id=tracer.run_id,
                error_type=type(e).__name__,
                error=str(e)[:300],
            )
        latency_ms = (time.perf_counter() - start) * 1000

        tracer.metrics.record_call(
            step="analyze_batch",
            provider=provider,
            model_id=model_id,
            prompt=prompt,
            latency_ms=latency_ms,
            success=reason != "oracle_unavailable",
            parse_success=reason is None,
            output_tokens=_output_tokens(self.llm) if reason is None else 0,
            error_message=reason or "",
        )

        if response is None:
            failed_reason = reason or "oracle_unavailable"
            return [
                (fallback_analysis(e, i, failed_reason), "fallback") for i, e in enumerate(events)
            ], reason

        by_index = response.by_index()
        findings: list[tuple[LogAnalysis, Literal["llm", "fallback"]]] = []
        for i, event in enumerate(events):
            analysis = by_index.get(i)
            if analysis is None:
                findings.append((fallback_analysis(event, i, "parse_error"), "fallback"))
            else:
                findings.append((analysis, "llm"))

        missing = sum(1 for _, m in findings if m == "fallback")
        if missing:
            reason = "parse_error"
            log.warning("analysis.llm.missing_indexes", run_id=tracer.run_id, missing=missing)
        else:
            log.info("analysis.llm.success", run_id=tracer.run_id, analysed=len(findings))
        return findings, reason

    def _clusters(self, rows: list[AnalyzedLog]) -> dict[str, list[AnalyzedLog]]:
        clusters: dict[str, list[AnalyzedLog]] = {}
        for row in rows:
            clusters.setdefault(row.cluster_name, []).append(row)
        return clusters

    async def _enrich_hot_clusters(
        self,
        clusters: dict[str, list[AnalyzedLog]],
        tracer: PassTracer,
    ) -> list[str]:
        if self.enricher is None:
            return []
        triggered: list[str] = []
        for name, members in clusters.items():
            avg = sum(m.anomaly_score for m in members) / len(members)
            if avg <= self.explain_threshold:
                continue
            # Fallback-only clusters mean the oracle is already known to be down
            if all(m.analysis_method == "fallback" for m in members):
                log.info("analysis.enrich.skipped", cluster=name, reason="fallback_only")
                continue
            try:
                await self.enricher.enrich_cluster(name, tracer=tracer)
                triggered.append(name)
            except Exception as e:
                log.error("analysis.enrich.failed", run_id=tracer.run_id, cluster=name, error=str(e))
        return triggered
