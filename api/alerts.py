from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from api.deps import get_engine
from api.structures import AlertActionRequest
from pipeline.engine import LogPulseEngine
from schemas.alerts import Alert, AlertEvaluationResult, AlertStats, AlertType

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


@router.get("", response_model=list[Alert], summary="Recent alerts")
async def recent_alerts(
    hours: int = Query(default=24, ge=1),
    limit: int = Query(default=100, ge=1, le=1000),
    engine: LogPulseEngine = Depends(get_engine),
) -> list[Alert]:
    return await engine.alert_engine.recent_alerts(hours=hours, limit=limit)


@router.get("/stats", response_model=AlertStats, summary="Alert counts for a time window")
async def alert_stats(
    hours: int = Query(default=24, ge=1),
    engine: LogPulseEngine = Depends(get_engine),
) -> AlertStats:
    return await engine.alert_engine.alert_stats(hours=hours)


@router.get("/active", response_model=list[Alert], summary="Alerts still active")
async def active_alerts(engine: LogPulseEngine = Depends(get_engine)) -> list[Alert]:
    return await engine.alert_engine.active_alerts()


@router.post("/evaluate", response_model=AlertEvaluationResult, summary="Run one evaluation pass now")
async def evaluate_alerts(engine: LogPulseEngine = Depends(get_engine)) -> AlertEvaluationResult:
    return await engine.alert_engine.evaluate_alerts()


@router.post("/{alert_id}/acknowledge", response_model=Alert, summary="Acknowledge an alert")
async def acknowledge_alert(
    alert_id: str,
    body: AlertActionRequest | None = Body(default=None),
    engine: LogPulseEngine = Depends(get_engine),
) -> Alert:
    alert = await engine.alert_engine.acknowledge(alert_id, by=(body or AlertActionRequest()).by)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert not found: {alert_id}")
    return alert


@router.post("/{alert_id}/resolve", response_model=Alert, summary="Resolve an alert")
async def resolve_alert(
    alert_id: str,
    body: AlertActionRequest | None = Body(default=None),
    engine: LogPulseEngine = Depends(get_engine),
) -> Alert:
    alert = await engine.alert_engine.resolve(alert_id, by=(body or AlertActionRequest()).by)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert not found: {alert_id}")
    return alert


@router.get("/type/{alert_type}", response_model=list[Alert], summary="Alerts of one type")
async def alerts_by_type(
    alert_type: AlertType,
    hours: int = Query(default=24, ge=1),
    limit: int = Query(default=100, ge=1, le=1000),
    engine: LogPulseEngine = Depends(get_engine),
) -> list[Alert]:
    return await engine.alert_engine.alerts_by_type(alert_type, hours=hours, limit=limit)
