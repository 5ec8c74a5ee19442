"""Test data builders, fake oracles and a controllable clock."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from providers.memory_store import MemoryLogStore
from schemas.analysis import AnalyzedLog
from schemas.events import LogEvent

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class ScriptedLLM:
    """Answers each response model with a canned payload."""

    provider_name = "scripted"
    model_id = "scripted-v1"

    def __init__(self, payloads: dict[str, Any]) -> None:
        self.payloads = payloads
        self.calls: list[str] = []

    async def generate(self, prompt, response_model, *, temperature=0.0, max_tokens=1024):
        self.calls.append(response_model.__name__)
        return response_model.model_validate(self.payloads[response_model.__name__])


class FailingLLM:
    provider_name = "failing"
    model_id = "failing-v1"

    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, prompt, response_model, *, temperature=0.0, max_tokens=1024):
        self.calls += 1
        raise ConnectionError("oracle unreachable")


class SlowLLM:
    """Never answers within any timeout a test would configure."""

    provider_name = "slow"
    model_id = "slow-v1"

    async def generate(self, prompt, response_model, *, temperature=0.0, max_tokens=1024):
        await asyncio.sleep(5)
        return response_model.model_validate({})


class MalformedLLM:
    """Answers with a shape that never matches the requested model."""

    provider_name = "malformed"
    model_id = "malformed-v1"

    async def generate(self, prompt, response_model, *, temperature=0.0, max_tokens=1024):
        return response_model.model_validate({"unexpected": "shape"})


class SlowLogStore(MemoryLogStore):
    """Memory log store whose bulk insert takes ``delay`` seconds."""

    def __init__(self, delay: float = 0.3, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.delay = delay

    async def insert_many(self, events: list[LogEvent]) -> int:
        await asyncio.sleep(self.delay)
        return await super().insert_many(events)


def make_log(
    level: str = "ERROR",
    message: str = "Payment failed",
    *,
    at: datetime = T0,
    **fields: Any,
) -> LogEvent:
    return LogEvent(level=level, message=message, timestamp=at, **fields)


def make_analyzed(
    cluster: str = "Payment_Gateway_Errors",
    *,
    score: float = 0.9,
    severity: str = "critical",
    at: datetime = T0,
    **fields: Any,
) -> AnalyzedLog:
    values: dict[str, Any] = {
        "original_log_id": uuid4().hex,
        "timestamp": at,
        "level": "CRITICAL",
        "message": "Payment gateway unreachable",
        "anomaly_detected": score >= 0.7,
        "anomaly_score": score,
        "severity": severity,
        "root_cause": "Gateway down",
        "cluster_id": cluster.lower(),
        "cluster_name": cluster,
    }
    values.update(fields)
    return AnalyzedLog(**values)


