from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.deps import get_engine
from api.structures import SearchRequest
from pipeline.engine import LogPulseEngine
from schemas.llm_responses import Severity
from schemas.search import CopilotResult, SearchResult, SearchSuggestions, TrendingResult

router = APIRouter(prefix="/api/search", tags=["Search"])


@router.post("", response_model=SearchResult, summary="Ask a question about recent logs")
async def search_logs(
    body: SearchRequest,
    engine: LogPulseEngine = Depends(get_engine),
) -> SearchResult:
    return await engine.search.search(body.query, hours=body.hours)


@router.get("/trending", response_model=TrendingResult, summary="Most frequent anomalous clusters")
async def trending(
    hours: int = Query(default=24, ge=1),
    engine: LogPulseEngine = Depends(get_engine),
) -> TrendingResult:
    return await engine.search.trending(hours=hours)


@router.get("/copilot", response_model=CopilotResult, summary="Plain-language digest of recent analysed logs")
async def copilot(
    severity: Severity | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    engine: LogPulseEngine = Depends(get_engine),
) -> CopilotResult:
    return await engine.search.copilot(severity=severity, limit=limit)


@router.get("/suggestions", response_model=SearchSuggestions, summary="Suggested questions to ask")
async def suggestions(engine: LogPulseEngine = Depends(get_engine)) -> SearchSuggestions:
    return SearchSuggestions(suggestions=await engine.search.suggestions())
