"""Engine lifecycle: shutdown persists every accepted log."""

from __future__ import annotations

import asyncio

from config.settings import Settings
from pipeline.engine import LogPulseEngine
from providers.dummy_llm import DummyLLM
from providers.factory import Stores
from providers.memory_store import MemoryAlertStore, MemoryAnalyzedLogStore
from tests.factories import SlowLogStore, make_log


def _engine(logs: SlowLogStore, analyzed: MemoryAnalyzedLogStore) -> LogPulseEngine:
    settings = Settings(llm_provider="dummy", store_backend="memory", batch_max_wait_seconds=0.05)
    stores = Stores(logs=logs, analyzed=analyzed, alerts=MemoryAlertStore())
    return LogPulseEngine(settings, stores=stores, llm=DummyLLM(), sinks=[])


async def test_stop_waits_for_write_in_flight():
    analyzed = MemoryAnalyzedLogStore()
    logs = SlowLogStore(delay=0.3, analyzed=analyzed)
    engine = _engine(logs, analyzed)
    await engine.start(background_jobs=False)

    engine.ingestion.submit(make_log())
    await asyncio.sleep(0.15)
    await engine.stop()

    assert len(logs) == 1
    assert not engine.started


async def test_stop_flushes_queued_logs():
    analyzed = MemoryAnalyzedLogStore()
    logs = SlowLogStore(delay=0.05, analyzed=analyzed)
    engine = _engine(logs, analyzed)
    await engine.start(background_jobs=False)

    for _ in range(5):
        engine.ingestion.submit(make_log())
    await engine.stop()

    assert len(logs) == 5
