"""Natural-language search over recent problem logs, copilot digests and trending clusters."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from config.prompts.registry import format_prompt
from observability.logger import get_logger
from observability.tracer import PassTracer
from schemas.analysis import AnalyzedLog, AnalyzedLogQuery
from schemas.events import LogEvent, LogQuery, utcnow
from schemas.llm_responses import CopilotSummary, SearchAnswer, Severity
from schemas.search import CopilotResult, SearchResult, TrendingIssue, TrendingResult

if TYPE_CHECKING:
    from protocols.llm import LLMProvider
    from protocols.storage import AnalyzedLogStore, LogStore

log = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

HEALTHY_ANSWER = "No critical issues found in the specified time range. Your system looks healthy!"

FALLBACK_ANSWER = SearchAnswer(
    answer="Analysis completed, but unable to parse detailed response.",
    root_cause="Unknown",
    impact="Unable to determine",
    suggested_fixes=["Review logs manually for more details"],
)

COPILOT_EMPTY = "No analyzed logs available yet"

FALLBACK_COPILOT = CopilotSummary(
    summary="Unable to generate a summary at this time.",
    next_steps=["Review the latest analysed logs manually"],
)

SUGGESTED_QUESTIONS = (
    "Why are payments failing?",
    "Show critical errors from last hour",
    "What's the top issue right now?",
    "Are there any new anomalies?",
)

_LEVEL_PRIORITY = {"CRITICAL": 3, "ERROR": 2, "WARN": 1, "INFO": 0}
_MAX_PROBLEM_LOGS = 500
_MAX_ANOMALIES = 100
_MAX_GROUPS = 10
_MAX_AI_CONTEXT = 20
_MAX_RELEVANT = 10
_MAX_SUGGESTIONS = 5


def summarize_error_groups(events: list[LogEvent], limit: int = _MAX_GROUPS) -> list[dict[str, Any]]:
    """Group by error code (else message head), most frequent first."""
    groups: dict[str, dict[str, Any]] = {}
    for e in events:
        key = e.error_key()
        group = groups.get(key)
        if group is None:
            group = groups[key] = {
                "error": key,
                "count": 0,
                "level": e.level,
                "cities": set(),
                "endpoints": set(),
                "first_seen": e.timestamp,
                "last_seen": e.timestamp,
                "samples": [],
            }
        group["count"] += 1
        if _LEVEL_PRIORITY[e.level] > _LEVEL_PRIORITY[group["level"]]:
            group["level"] = e.level
        if e.city:
            group["cities"].add(e.city)
        if e.endpoint:
            group["endpoints"].add(e.endpoint)
        group["first_seen"] = min(group["first_seen"], e.timestamp)
        group["last_seen"] = max(group["last_seen"], e.timestamp)
        if len(group["samples"]) < 3:
            group["samples"].append(e.message)

    ranked = sorted(groups.values(), key=lambda g: g["count"], reverse=True)[:limit]
    return [
        {
            **g,
            "cities": sorted(g["cities"]),
            "endpoints": sorted(g["endpoints"]),
            "first_seen": g["first_seen"].isoformat(),
            "last_seen": g["last_seen"].isoformat(),
        }
        for g in ranked
    ]


def select_relevant_logs(
    events: list[LogEvent],
    error_types: list[str],
    limit: int = _MAX_RELEVANT,
) -> list[LogEvent]:
    """Logs matching the oracle's error types (case-insensitive), else the most severe ones."""
    wanted = [t.lower() for t in error_types if t.strip()]
    if wanted:
        matched = [
            e for e in events
            if any(t in e.error_key().lower() for t in wanted)
        ]
        if matched:
            return matched[:limit]
    ranked = sorted(events, key=lambda e: (_LEVEL_PRIORITY[e.level], e.timestamp), reverse=True)
    return ranked[:limit]


def _ai_context(rows: list[AnalyzedLog]) -> str:
    return "\n".join(
        json.dumps(
            {
                "cluster": r.cluster_name,
                "severity": r.severity,
                "anomaly_score": r.anomaly_score,
                "root_cause": r.root_cause,
                "message": r.message[:200],
            },
            ensure_ascii=False,
        )
        for r in rows[:_MAX_AI_CONTEXT]
    ) or "(none)"


def _copilot_context(rows: list[AnalyzedLog]) -> str:
    return "\n".join(
        json.dumps(
            {
                "timestamp": r.timestamp.isoformat(),
                "level": r.level,
                "message": r.message[:200],
                "endpoint": r.endpoint,
                "category": r.category,
                "root_cause": r.root_cause,
                "ai_explanation": (r.ai_explanation or "")[:300],
            },
            ensure_ascii=False,
        )
        for r in rows
    )


class LogSearchService:
    def __init__(
        self,
        logs: LogStore,
        analyzed: AnalyzedLogStore,
        llm: LLMProvider,
        *,
        timeout: float = 30.0,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        prompt_version: str = "v1",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.logs = logs
        self.analyzed = analyzed
        self.llm = llm
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.prompt_version = prompt_version
        self.clock = clock

    async def search(self, question: str, hours: int = 24) -> SearchResult:
        tracer = PassTracer(kind="search", prompt_version=self.prompt_version)
        since = self.clock() - timedelta(hours=hours)

        tracer.start_step("gather")
        problems = await self.logs.find(
            LogQuery(levels=["WARN", "ERROR", "CRITICAL"], start=since, limit=_MAX_PROBLEM_LOGS)
        )
        tracer.logs_selected = len(problems)
        if not problems:
            tracer.end_step("gather")
            log.info("search.healthy", run_id=tracer.run_id, hours=hours)
            return SearchResult(query=question, answer=HEALTHY_ANSWER)

        anomalies = await self.analyzed.find(
            AnalyzedLogQuery(anomaly_only=True, start=since, sort="newest", limit=_MAX_ANOMALIES)
        )
        groups = summarize_error_groups(problems)
        tracer.end_step("gather")

        prompt = format_prompt(
            "search",
            self.prompt_version,
            question=question,
            hours=hours,
            total=len(problems),
            critical=sum(1 for e in problems if e.level == "CRITICAL"),
            errors=sum(1 for e in problems if e.level == "ERROR"),
            warnings=sum(1 for e in problems if e.level == "WARN"),
            error_groups="\n".join(json.dumps(g, ensure_ascii=False) for g in groups),
            ai_analysis=_ai_context(anomalies),
        )

        tracer.start_step("oracle")
        answer, parse_ok, call_ok = await self._ask(prompt, tracer, SearchAnswer, FALLBACK_ANSWER)
        tracer.end_step("oracle")

        relevant = select_relevant_logs(problems, answer.relevant_error_types)
        log.info(
            "search.done",
            run_id=tracer.run_id,
            hours=hours,
            problem_logs=len(problems),
            groups=len(groups),
            relevant=len(relevant),
            fallback_used=not (parse_ok and call_ok),
        )
        return SearchResult(
            query=question,
            answer=answer.answer,
            root_cause=answer.root_cause,
            impact=answer.impact,
            suggested_fixes=answer.suggested_fixes,
            timeline=answer.timeline,
            relevant_logs=relevant,
            total_logs_analyzed=len(problems),
            fallback_used=not (parse_ok and call_ok),
        )

    async def _ask(
        self,
        prompt: str,
        tracer: PassTracer,
        response_model: type[T],
        fallback: T,
        step: str = "search",
    ) -> tuple[T, bool, bool]:
        parse_ok = call_ok = True
        error = ""
        answer = fallback
        start = time.perf_counter()
        try:
            answer = await asyncio.wait_for(
                self.llm.generate(
                    prompt,
                    response_model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except ValidationError as e:
            parse_ok = False
            error = str(e)
            log.warning(f"{step}.llm.parse_failed", run_id=tracer.run_id, error=error[:300])
        except Exception as e:
            call_ok = False
            error = f"{type(e).__name__}: {e}"
            log.warning(f"{step}.llm.failed", run_id=tracer.run_id, error=error[:300])

        tracer.metrics.record_call(
            step=step,
            provider=getattr(self.llm, "provider_name", "unknown"),
            model_id=getattr(self.llm, "model_id", "unknown"),
            prompt=prompt,
            latency_ms=(time.perf_counter() - start) * 1000,
            success=call_ok,
            parse_success=parse_ok,
            error_message=error,
        )
        return answer, parse_ok, call_ok

    async def copilot(self, severity: Severity | None = None, limit: int = 20) -> CopilotResult:
        """Summary, key problems and next steps for the latest analysed logs."""
        tracer = PassTracer(kind="copilot", prompt_version=self.prompt_version)
        rows = await self.analyzed.find(
            AnalyzedLogQuery(severity=severity, sort="newest", limit=limit)
        )
        tracer.logs_selected = len(rows)
        if not rows:
            log.info("copilot.empty", run_id=tracer.run_id, severity=severity)
            return CopilotResult(message=COPILOT_EMPTY)

        prompt = format_prompt(
            "copilot",
            self.prompt_version,
            scope=f"{severity} severity only" if severity else "all severities",
            count=len(rows),
            logs=_copilot_context(rows),
        )
        tracer.start_step("oracle")
        digest, parse_ok, call_ok = await self._ask(
            prompt, tracer, CopilotSummary, FALLBACK_COPILOT, step="copilot"
        )
        tracer.end_step("oracle")

        log.info(
            "copilot.done",
            run_id=tracer.run_id,
            logs=len(rows),
            fallback_used=not (parse_ok and call_ok),
        )
        return CopilotResult(
            summary=digest.summary,
            key_problems=digest.key_problems,
            next_steps=digest.next_steps,
            analyzed_logs=rows,
            fallback_used=not (parse_ok and call_ok),
        )

    async def suggestions(self) -> list[str]:
        """Starter questions, led by the top anomalous cluster of the last hour."""
        try:
            top = await self.trending(hours=1, limit=1)
        except Exception as e:
            log.warning("search.suggestions.trending_failed", error=str(e)[:300])
            return list(SUGGESTED_QUESTIONS[:3])
        questions = list(SUGGESTED_QUESTIONS)
        if top.trending:
            questions.insert(0, f"Tell me about {top.trending[0].cluster_name}")
        return questions[:_MAX_SUGGESTIONS]

    async def trending(self, hours: int = 24, limit: int = 5) -> TrendingResult:
        """Anomalous clusters in the window, most frequent first."""
        since = self.clock() - timedelta(hours=hours)
        summaries = await self.analyzed.cluster_summaries(since=since, anomaly_only=True)
        summaries.sort(key=lambda s: s.count, reverse=True)
        return TrendingResult(
            hours=hours,
            trending=[
                TrendingIssue(
                    cluster_name=s.cluster_name,
                    count=s.count,
                    avg_anomaly_score=s.avg_anomaly_score,
                    latest_occurrence=s.latest_occurrence,
                    severity=s.max_severity,
                    root_cause=s.root_cause,
                )
                for s in summaries[:limit]
            ],
        )
