from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_engine
from pipeline.engine import LogPulseEngine
from schemas.search import BlastRadius, ErrorSession, SessionTimeline

router = APIRouter(prefix="/api/timeline", tags=["Timeline"])


@router.get("/session/{session_id}", response_model=SessionTimeline, summary="Journey of one session")
async def session_timeline(
    session_id: str,
    engine: LogPulseEngine = Depends(get_engine),
) -> SessionTimeline:
    timeline = await engine.timeline.session_timeline(session_id)
    if timeline is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return timeline


@router.get("/blast-radius/{error_code}", response_model=BlastRadius, summary="Reach of one error code")
async def blast_radius(
    error_code: str,
    hours: int = Query(default=1, ge=1, le=168),
    engine: LogPulseEngine = Depends(get_engine),
) -> BlastRadius:
    return await engine.timeline.blast_radius(error_code, hours=hours)


@router.get("/recent-sessions", response_model=list[ErrorSession], summary="Sessions that hit errors")
async def recent_sessions(
    hours: int = Query(default=24, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    engine: LogPulseEngine = Depends(get_engine),
) -> list[ErrorSession]:
    return await engine.timeline.recent_error_sessions(hours=hours, limit=limit)
