"""Ingestion job payloads: a tagged variant, dispatched on ``kind``."""

from __future__ import annotations

from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field

from schemas.events import LogEvent, WireModel


class SingleLogJob(BaseModel):
    kind: Literal["single"] = "single"
    job_id: str = Field(default_factory=lambda: uuid4().hex)
    event: LogEvent

    @property
    def size(self) -> int:
        return 1


class BatchLogJob(BaseModel):
    kind: Literal["batch"] = "batch"
    job_id: str = Field(default_factory=lambda: uuid4().hex)
    events: list[LogEvent] = Field(min_length=1)

    @property
    def size(self) -> int:
        return len(self.events)


IngestJob = Annotated[Union[SingleLogJob, BatchLogJob], Field(discriminator="kind")]


class IngestAck(WireModel):
    """Acceptance acknowledgment. Not a persistence confirmation."""

    success: bool = True
    job_id: str
    accepted: int
    message: str


class QueueStats(WireModel):
    waiting: int = 0
    processed: int = 0
    failed: int = 0
    buffered: int = 0
    persisted: int = 0
    dropped: int = 0
