from __future__ import annotations

import math
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from api.deps import get_engine
from api.structures import BatchIngestRequest
from pipeline.engine import LogPulseEngine
from schemas.events import CleanupResult, LogEvent, LogLevel, LogPage, LogQuery, LogStats
from schemas.jobs import IngestAck, QueueStats

router = APIRouter(prefix="/api/logs", tags=["Logs"])


@router.post("", status_code=202, response_model=IngestAck, summary="Ingest one log event")
async def ingest_log(event: LogEvent, engine: LogPulseEngine = Depends(get_engine)) -> IngestAck:
    return engine.ingestion.submit(event)


@router.post("/batch", status_code=202, response_model=IngestAck, summary="Ingest a batch of log events")
async def ingest_batch(
    body: BatchIngestRequest,
    engine: LogPulseEngine = Depends(get_engine),
) -> IngestAck:
    return engine.ingestion.submit_batch(body.logs)


@router.get("", response_model=LogPage, summary="Query logs with filters and pagination")
async def list_logs(
    level: LogLevel | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    page: int = Query(default=1, ge=1),
    anomaly_only: bool = Query(default=False, alias="anomalyOnly"),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    engine: LogPulseEngine = Depends(get_engine),
) -> LogPage:
    query = LogQuery(
        levels=[level] if level else None,
        start=start_date,
        end=end_date,
        anomaly_only=anomaly_only,
        skip=(page - 1) * limit,
        limit=limit,
    )
    logs = await engine.stores.logs.find(query)
    total = await engine.stores.logs.count(query)
    return LogPage(page=page, limit=limit, total=total, pages=math.ceil(total / limit), logs=logs)


@router.get("/stats", response_model=LogStats, summary="Counts by level, anomalies and recent errors")
async def log_stats(engine: LogPulseEngine = Depends(get_engine)) -> LogStats:
    return await engine.stores.logs.stats()


@router.delete("/cleanup", response_model=CleanupResult, summary="Delete logs older than N days")
async def cleanup_logs(
    days_old: int = Query(default=7, ge=0, alias="daysOld"),
    engine: LogPulseEngine = Depends(get_engine),
) -> CleanupResult:
    return await engine.retention.cleanup(days_old)


@router.get("/queue/stats", response_model=QueueStats, summary="Ingestion queue counters")
async def queue_stats(engine: LogPulseEngine = Depends(get_engine)) -> QueueStats:
    return engine.ingestion.stats()
