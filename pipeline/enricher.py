"""Cluster-level explanation enrichment."""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from collections import Counter
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from config.prompts.registry import format_prompt
from observability.logger import get_logger
from schemas.analysis import (
    AnalyzedLog,
    AnalyzedLogQuery,
    ClusterExplanationResult,
    EnrichmentResult,
)
from schemas.llm_responses import ClusterExplanation

if TYPE_CHECKING:
    from observability.tracer import PassTracer
    from protocols.llm import LLMProvider
    from protocols.storage import AnalyzedLogStore

log = get_logger(__name__)

EXPLANATION_UNAVAILABLE = "Unable to generate explanation at this time."


def _unavailable(cluster_name: str, *, oracle_called: bool) -> EnrichmentResult:
    return EnrichmentResult(
        cluster_name=cluster_name,
        explanation=EXPLANATION_UNAVAILABLE,
        oracle_called=oracle_called,
        fallback_used=True,
    )


class ExplanationEnricher:
    """Explains a cluster once and writes the text onto every unexplained log in it.

    Only rows with ``is_explained=False`` are selected, so a second call on an
    explained cluster is a no-op and makes no oracle call. A per-cluster lock
    keeps concurrent callers (analysis pass, explain-on-demand) from paying
    for the same explanation twice. A failed oracle call yields the
    placeholder text and writes nothing, so a later call can try again. A
    failing store read or write also yields the placeholder.
    """

    def __init__(
        self,
        analyzed: AnalyzedLogStore,
        llm: LLMProvider,
        *,
        max_logs: int = 50,
        timeout: float = 30.0,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        prompt_version: str = "v1",
    ) -> None:
        self.analyzed = analyzed
        self.llm = llm
        self.max_logs = max_logs
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.prompt_version = prompt_version
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self.oracle_calls = 0

    async def enrich_cluster(
        self,
        cluster_name: str,
        *,
        tracer: PassTracer | None = None,
    ) -> EnrichmentResult:
        async with self._cluster_lock(cluster_name):
            try:
                pending = await self.analyzed.find(
                    AnalyzedLogQuery(
                        cluster_name=cluster_name,
                        explained=False,
                        sort="newest",
                        limit=self.max_logs,
                    )
                )
            except Exception as e:
                log.error("enrich.store.read_failed", cluster=cluster_name, error=str(e)[:300])
                return _unavailable(cluster_name, oracle_called=False)
            if not pending:
                log.debug("enrich.noop", cluster=cluster_name)
                return EnrichmentResult(cluster_name=cluster_name)

            explanation = await self._generate(cluster_name, pending, tracer)
            if explanation is None:
                return _unavailable(cluster_name, oracle_called=True)

            try:
                updated = await self.analyzed.set_cluster_explanation(cluster_name, explanation)
            except Exception as e:
                log.error("enrich.store.write_failed", cluster=cluster_name, error=str(e)[:300])
                return _unavailable(cluster_name, oracle_called=True)
            log.info("enrich.cluster.done", cluster=cluster_name, logs_updated=updated)
            return EnrichmentResult(
                cluster_name=cluster_name,
                logs_updated=updated,
                explanation=explanation,
                oracle_called=True,
            )

    @contextlib.asynccontextmanager
    async def _cluster_lock(self, cluster_name: str) -> AsyncIterator[None]:
        """Per-cluster lock, dropped once no caller holds or awaits it."""
        lock = self._locks.setdefault(cluster_name, asyncio.Lock())
        self._lock_users[cluster_name] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[cluster_name] -= 1
            if not self._lock_users[cluster_name]:
                del self._lock_users[cluster_name]
                del self._locks[cluster_name]

    async def explain_cluster(self, cluster_name: str) -> ClusterExplanationResult | None:
        """Cached explanation if one exists, else enrich now. ``None`` for an unknown cluster."""
        total = await self.analyzed.count(AnalyzedLogQuery(cluster_name=cluster_name))
        if total == 0:
            return None

        explained = await self.analyzed.find(
            AnalyzedLogQuery(cluster_name=cluster_name, explained=True, sort="newest", limit=1)
        )
        if explained and explained[0].ai_explanation:
            return ClusterExplanationResult(
                cluster_name=cluster_name,
                explanation=explained[0].ai_explanation,
                cached=True,
            )

        result = await self.enrich_cluster(cluster_name)
        return ClusterExplanationResult(
            cluster_name=cluster_name,
            explanation=result.explanation or EXPLANATION_UNAVAILABLE,
            cached=False,
        )

    async def _generate(
        self,
        cluster_name: str,
        rows: list[AnalyzedLog],
        tracer: PassTracer | None,
    ) -> str | None:
        condensed = "\n".join(
            json.dumps(
                {
                    "timestamp": r.timestamp.isoformat(),
                    "level": r.level,
                    "message": r.message,
                    "anomaly_score": r.anomaly_score,
                },
                ensure_ascii=False,
            )
            for r in rows
        )
        prompt = format_prompt(
            "explain_cluster",
            self.prompt_version,
            cluster=cluster_name,
            count=len(rows),
            logs=condensed,
        )

        self.oracle_calls += 1
        error = ""
        explanation: str | None = None
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self.llm.generate(
                    prompt,
                    ClusterExplanation,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
            explanation = result.explanation
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            log.warning("enrich.llm.failed", cluster=cluster_name, error=error[:300])
        latency_ms = (time.perf_counter() - start) * 1000

        if tracer is not None:
            tracer.metrics.record_call(
                step="explain_cluster",
                provider=getattr(self.llm, "provider_name", "unknown"),
                model_id=getattr(self.llm, "model_id", "unknown"),
                prompt=prompt,
                latency_ms=latency_ms,
                success=explanation is not None,
                error_message=error,
            )
        return explanation
