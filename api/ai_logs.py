from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_engine
from pipeline.engine import LogPulseEngine
from schemas.analysis import (
    AnalysisPassResult,
    AnalyzedLog,
    AnalyzedLogPage,
    AnalyzedLogQuery,
    ClusterExplanationResult,
    ClusterSummary,
)
from schemas.events import utcnow
from schemas.llm_responses import Severity

router = APIRouter(prefix="/api/ai-logs", tags=["AI logs"])

ANOMALY_SCORE_FLOOR = 0.7


@router.get("", response_model=AnalyzedLogPage, summary="Query analysed logs")
async def list_analyzed_logs(
    cluster: str | None = None,
    min_score: float | None = Query(default=None, ge=0.0, le=1.0, alias="minScore"),
    severity: Severity | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    page: int = Query(default=1, ge=1),
    engine: LogPulseEngine = Depends(get_engine),
) -> AnalyzedLogPage:
    query = AnalyzedLogQuery(
        cluster_name=cluster,
        min_anomaly_score=min_score,
        severity=severity,
        sort="newest",
        skip=(page - 1) * limit,
        limit=limit,
    )
    logs = await engine.stores.analyzed.find(query)
    total = await engine.stores.analyzed.count(query)
    return AnalyzedLogPage(page=page, limit=limit, total=total, logs=logs)


@router.get("/anomalies", response_model=list[AnalyzedLog], summary="Top anomalies by score")
async def top_anomalies(
    limit: int = Query(default=20, ge=1, le=200),
    engine: LogPulseEngine = Depends(get_engine),
) -> list[AnalyzedLog]:
    return await engine.stores.analyzed.find(
        AnalyzedLogQuery(min_anomaly_score=ANOMALY_SCORE_FLOOR, sort="score", limit=limit)
    )


@router.get("/clusters", response_model=list[ClusterSummary], summary="Per-cluster aggregates")
async def cluster_summaries(
    hours: int | None = Query(default=None, ge=1),
    engine: LogPulseEngine = Depends(get_engine),
) -> list[ClusterSummary]:
    since = utcnow() - timedelta(hours=hours) if hours else None
    return await engine.stores.analyzed.cluster_summaries(since=since)


@router.get(
    "/explain/{cluster}",
    response_model=ClusterExplanationResult,
    summary="Cached cluster explanation, generated on first request",
)
async def explain_cluster(
    cluster: str,
    engine: LogPulseEngine = Depends(get_engine),
) -> ClusterExplanationResult:
    result = await engine.enricher.explain_cluster(cluster)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Cluster not found: {cluster}")
    return result


@router.post("/analyze", response_model=AnalysisPassResult, summary="Run one analysis pass now")
async def analyze_now(
    batch_size: int | None = Query(default=None, ge=1, le=500, alias="batchSize"),
    engine: LogPulseEngine = Depends(get_engine),
) -> AnalysisPassResult:
    return await engine.run_analysis_pass(batch_size)
