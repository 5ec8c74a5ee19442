"""Tests for natural-language search and trending clusters."""

from __future__ import annotations

from datetime import timedelta

import pytest

from pipeline.search import (
    COPILOT_EMPTY,
    FALLBACK_ANSWER,
    FALLBACK_COPILOT,
    HEALTHY_ANSWER,
    SUGGESTED_QUESTIONS,
    LogSearchService,
    select_relevant_logs,
    summarize_error_groups,
)
from tests.factories import T0, FailingLLM, MalformedLLM, make_analyzed, make_log


def _service(log_store, analyzed_store, llm, clock) -> LogSearchService:
    return LogSearchService(log_store, analyzed_store, llm, timeout=1.0, clock=clock)


@pytest.fixture
async def incident(log_store):
    hour_ago = T0 - timedelta(hours=1)
    events = [
        make_log("ERROR", "Payment failed", at=hour_ago, error_code="PAYMENT_GATEWAY_TIMEOUT", city="Delhi")
        for _ in range(3)
    ]
    events.append(make_log("CRITICAL", "Database unavailable", at=hour_ago, error_code="DATABASE_UNAVAILABLE"))
    events.append(make_log("INFO", "User visited homepage", at=hour_ago))
    events.append(make_log("ERROR", "Old failure", at=T0 - timedelta(hours=30), error_code="STALE"))
    await log_store.insert_many(events)
    return events


def test_error_groups_ranked_and_capped():
    events = [make_log(error_code=f"CODE_{i}") for i in range(12)]
    events += [make_log(error_code="CODE_5") for _ in range(4)]

    groups = summarize_error_groups(events)

    assert len(groups) == 10
    assert groups[0]["error"] == "CODE_5"
    assert groups[0]["count"] == 5


def test_error_group_keeps_highest_level():
    groups = summarize_error_groups(
        [make_log("WARN", error_code="X"), make_log("CRITICAL", error_code="X"), make_log("ERROR", error_code="X")]
    )

    assert groups[0]["level"] == "CRITICAL"


def test_relevant_logs_match_error_types_case_insensitive():
    events = [make_log(error_code="CARD_DECLINED"), make_log(error_code="DB_POOL_EXHAUSTED")]

    relevant = select_relevant_logs(events, ["card_declined"])

    assert [e.error_code for e in relevant] == ["CARD_DECLINED"]


def test_relevant_logs_fall_back_to_most_severe():
    events = [make_log("WARN"), make_log("CRITICAL"), make_log("ERROR")]

    relevant = select_relevant_logs(events, [])

    assert relevant[0].level == "CRITICAL"


async def test_healthy_window(log_store, analyzed_store, dummy_llm, clock):
    await log_store.insert_many([make_log("INFO", "ok", at=T0 - timedelta(minutes=5))])
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    result = await service.search("Why are payments failing?")

    assert result.answer == HEALTHY_ANSWER
    assert result.total_logs_analyzed == 0
    assert dummy_llm.calls == []


async def test_answer_built_from_window(log_store, analyzed_store, dummy_llm, clock, incident):
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    result = await service.search("Why are payments failing?", hours=24)

    assert result.success
    assert result.total_logs_analyzed == 4
    assert "PAYMENT_GATEWAY_TIMEOUT" in result.answer
    assert not result.fallback_used
    assert result.relevant_logs
    assert all(e.error_code != "STALE" for e in result.relevant_logs)


@pytest.mark.parametrize("llm", [MalformedLLM(), FailingLLM()])
async def test_oracle_problems_yield_fallback_answer(log_store, analyzed_store, clock, incident, llm):
    service = _service(log_store, analyzed_store, llm, clock)

    result = await service.search("What broke?")

    assert result.fallback_used
    assert result.answer == FALLBACK_ANSWER.answer
    assert result.relevant_logs[0].level == "CRITICAL"


async def test_trending_orders_anomalous_clusters_by_count(analyzed_store, dummy_llm, clock, log_store):
    for _ in range(3):
        await analyzed_store.insert_one(make_analyzed("Payment_Gateway_Errors", at=T0 - timedelta(hours=1)))
    await analyzed_store.insert_one(make_analyzed("Database_Errors", at=T0 - timedelta(hours=2)))
    await analyzed_store.insert_one(
        make_analyzed("Normal_Operations", score=0.05, severity="low", at=T0 - timedelta(hours=1))
    )
    await analyzed_store.insert_one(make_analyzed("Old_Errors", at=T0 - timedelta(days=3)))
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    result = await service.trending(hours=24)

    assert [t.cluster_name for t in result.trending] == ["Payment_Gateway_Errors", "Database_Errors"]
    assert result.trending[0].count == 3


@pytest.fixture
async def analysed(analyzed_store):
    for _ in range(3):
        await analyzed_store.insert_one(make_analyzed("Payment_Gateway_Errors", at=T0 - timedelta(minutes=10)))
    await analyzed_store.insert_one(
        make_analyzed(
            "Normal_Operations",
            score=0.05,
            severity="low",
            at=T0 - timedelta(minutes=5),
            level="INFO",
            message="User visited homepage",
            root_cause="Routine operation",
        )
    )


async def test_copilot_digests_latest_analysed_logs(log_store, analyzed_store, dummy_llm, clock, analysed):
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    result = await service.copilot()

    assert result.success
    assert not result.fallback_used
    assert len(result.analyzed_logs) == 4
    assert result.analyzed_logs[0].cluster_name == "Normal_Operations"
    assert "Gateway down" in result.summary
    assert result.key_problems == ["Gateway down (3 logs)"]
    assert result.next_steps
    assert dummy_llm.calls == ["CopilotSummary"]


async def test_copilot_severity_and_limit(log_store, analyzed_store, dummy_llm, clock, analysed):
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    low = await service.copilot(severity="low")
    capped = await service.copilot(limit=2)

    assert [r.severity for r in low.analyzed_logs] == ["low"]
    assert low.key_problems == []
    assert len(capped.analyzed_logs) == 2


async def test_copilot_without_analysed_logs(log_store, analyzed_store, dummy_llm, clock):
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    result = await service.copilot()

    assert result.message == COPILOT_EMPTY
    assert result.summary == ""
    assert dummy_llm.calls == []


@pytest.mark.parametrize("llm", [MalformedLLM(), FailingLLM()])
async def test_copilot_falls_back_when_oracle_fails(log_store, analyzed_store, clock, analysed, llm):
    service = _service(log_store, analyzed_store, llm, clock)

    result = await service.copilot()

    assert result.fallback_used
    assert result.summary == FALLBACK_COPILOT.summary
    assert result.next_steps == FALLBACK_COPILOT.next_steps
    assert len(result.analyzed_logs) == 4


async def test_suggestions_lead_with_top_trending_cluster(log_store, analyzed_store, dummy_llm, clock, analysed):
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    suggestions = await service.suggestions()

    assert suggestions[0] == "Tell me about Payment_Gateway_Errors"
    assert suggestions[1:] == list(SUGGESTED_QUESTIONS)


async def test_suggestions_without_trending_are_static(log_store, analyzed_store, dummy_llm, clock):
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    assert await service.suggestions() == list(SUGGESTED_QUESTIONS)


async def test_suggestions_survive_store_failure(log_store, analyzed_store, dummy_llm, clock):
    async def offline(since=None, anomaly_only=False):
        raise RuntimeError("store offline")

    analyzed_store.cluster_summaries = offline
    service = _service(log_store, analyzed_store, dummy_llm, clock)

    assert await service.suggestions() == list(SUGGESTED_QUESTIONS[:3])
