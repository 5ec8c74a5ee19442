"""Shared fixtures for tests: in-memory stores, dummy oracle and a fixed clock."""

from __future__ import annotations

import pytest

from providers.dummy_llm import DummyLLM
from providers.memory_store import MemoryAlertStore, MemoryAnalyzedLogStore, MemoryLogStore
from tests.factories import FixedClock


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def log_store(analyzed_store: MemoryAnalyzedLogStore) -> MemoryLogStore:
    return MemoryLogStore(analyzed=analyzed_store)


@pytest.fixture
def analyzed_store() -> MemoryAnalyzedLogStore:
    return MemoryAnalyzedLogStore()


@pytest.fixture
def alert_store() -> MemoryAlertStore:
    return MemoryAlertStore()


@pytest.fixture
def dummy_llm() -> DummyLLM:
    return DummyLLM()
