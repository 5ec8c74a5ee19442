"""Request bodies accepted by the HTTP boundary."""

from __future__ import annotations

from pydantic import Field

from schemas.events import LogEvent, WireModel


class BatchIngestRequest(WireModel):
    logs: list[LogEvent] = Field(min_length=1)


class SearchRequest(WireModel):
    query: str = Field(min_length=1, max_length=500)
    hours: int = Field(default=24, ge=1, le=24 * 30)


class AlertActionRequest(WireModel):
    by: str = Field(default="operator", min_length=1, max_length=200)


class ErrorResponse(WireModel):
    success: bool = False
    error: str
    details: list[dict] | None = None
