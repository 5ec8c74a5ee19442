"""Log event schemas: what producers send and what the log store keeps."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

LogLevel = Literal["INFO", "WARN", "ERROR", "CRITICAL"]

ERROR_LEVELS: frozenset[str] = frozenset({"ERROR", "CRITICAL"})

_LEVEL_ALIASES = {"WARNING": "WARN", "FATAL": "CRITICAL"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WireModel(BaseModel):
    """Base for records exposed to producers and API clients: camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LogEvent(WireModel):
    """One observed event from a monitored system."""

    log_id: str = Field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel
    message: str = Field(min_length=1)
    service: str = "ticketbooking-platform"
    user_id: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    endpoint: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    response_time: float | None = None
    city: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    # Written once by the analysis scheduler
    anomaly_detected: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().upper()
            return _LEVEL_ALIASES.get(v, v)
        return v

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def is_error(self) -> bool:
        return self.level in ERROR_LEVELS

    def error_key(self) -> str:
        """Grouping key for top-error summaries: error code, else the message head."""
        return self.error_code or self.message[:50] or "unknown"


class LogQuery(BaseModel):
    """Filter for log store reads. Unset fields do not filter."""

    levels: list[LogLevel] | None = None
    start: datetime | None = None
    end: datetime | None = None
    end_inclusive: bool = True
    anomaly_only: bool = False
    session_id: str | None = None
    error_code: str | None = None
    sort: Literal["newest", "oldest"] = "newest"
    skip: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)

    def matches(self, event: LogEvent) -> bool:
        if self.levels is not None and event.level not in self.levels:
            return False
        if self.start is not None and event.timestamp < as_utc(self.start):
            return False
        if self.end is not None:
            end = as_utc(self.end)
            if event.timestamp > end or (not self.end_inclusive and event.timestamp == end):
                return False
        if self.anomaly_only and not event.anomaly_detected:
            return False
        if self.session_id is not None and event.session_id != self.session_id:
            return False
        if self.error_code is not None and event.error_code != self.error_code:
            return False
        return True


class LogPage(WireModel):
    page: int
    limit: int
    total: int
    pages: int
    logs: list[LogEvent] = Field(default_factory=list)


class LogStats(WireModel):
    total: int = 0
    anomalies: int = 0
    by_level: dict[str, int] = Field(default_factory=dict)
    recent_errors: list[LogEvent] = Field(default_factory=list)


class CleanupResult(WireModel):
    cutoff: datetime
    days: int
    logs_deleted: int = 0
    analyzed_deleted: int = 0
