"""Tests for session timelines, blast radius and recent error sessions."""

from __future__ import annotations

from datetime import timedelta

import pytest

from pipeline.timeline import TimelineService, derive_user_action, format_duration
from tests.factories import T0, make_analyzed, make_log


@pytest.fixture
def timeline(log_store, analyzed_store, clock) -> TimelineService:
    return TimelineService(log_store, analyzed_store, clock=clock)


@pytest.mark.parametrize(
    "endpoint, level, expected",
    [
        ("POST /cart/add", "INFO", "Added to cart"),
        ("POST /payment/process", "ERROR", "Payment attempt"),
        ("GET /events/3", "INFO", "Browsed events"),
        ("POST /auth/login", "INFO", "Logged in"),
        ("GET /", "INFO", "Visited homepage"),
        (None, "ERROR", "Error occurred"),
        (None, "CRITICAL", "Critical error"),
    ],
)
def test_derive_user_action(endpoint, level, expected):
    assert derive_user_action(make_log(level, "something", endpoint=endpoint)) == expected


def test_format_duration():
    assert format_duration(T0, T0 + timedelta(seconds=42)) == "42s"
    assert format_duration(T0, T0 + timedelta(minutes=3, seconds=5)) == "3m 5s"


async def test_session_timeline_with_error_analysis(timeline, log_store, analyzed_store):
    s = {"session_id": "session_1", "user_id": "user_7", "city": "Mumbai"}
    journey = [
        make_log("INFO", "User visited homepage", at=T0, endpoint="GET /", **s),
        make_log("INFO", "User browsed event details", at=T0 + timedelta(seconds=20), endpoint="GET /events/1", **s),
        make_log("INFO", "Ticket added to cart", at=T0 + timedelta(seconds=50), endpoint="POST /cart/add", **s),
        make_log(
            "ERROR",
            "Payment failed",
            at=T0 + timedelta(seconds=95),
            endpoint="POST /payment/process",
            error_code="CARD_DECLINED",
            **s,
        ),
    ]
    await log_store.insert_many(list(reversed(journey)))
    await analyzed_store.insert_one(
        make_analyzed(original_log_id=journey[-1].log_id, root_cause="Card declined by bank", suggested_fix="Retry")
    )

    result = await timeline.session_timeline("session_1")

    assert result.total_events == 4
    assert result.duration == "1m 35s"
    assert result.user_location == "Mumbai"
    assert result.error_occurred
    assert [e.action for e in result.timeline] == [
        "Visited homepage",
        "Browsed events",
        "Added to cart",
        "Payment attempt",
    ]
    assert result.timeline[-1].analysis is not None
    analysis = result.error_analysis
    assert analysis.why_it_happened == "Card declined by bank"
    assert analysis.how_to_fix == "Retry"
    assert analysis.leading_actions == ["Visited homepage", "Browsed events", "Added to cart"]
    assert "failed at: Payment attempt" in analysis.user_impact


async def test_unknown_session_is_none(timeline):
    assert await timeline.session_timeline("session_missing") is None


async def test_clean_session_has_no_error_analysis(timeline, log_store):
    await log_store.insert_many([make_log("INFO", "ok", session_id="session_ok")])

    result = await timeline.session_timeline("session_ok")

    assert not result.error_occurred
    assert result.error_analysis is None


async def test_blast_radius(timeline, log_store):
    minute = T0 - timedelta(minutes=10)
    await log_store.insert_many(
        [
            make_log(at=minute, error_code="CARD_DECLINED", user_id="u1", city="Delhi", endpoint="POST /payment/process"),
            make_log(at=minute, error_code="CARD_DECLINED", user_id="u2", city="Mumbai", endpoint="POST /payment/process"),
            make_log(at=minute + timedelta(minutes=1), error_code="CARD_DECLINED", user_id="u1", city="Delhi"),
            make_log(at=T0 - timedelta(hours=3), error_code="CARD_DECLINED", user_id="u9"),
            make_log(at=minute, error_code="OTHER", user_id="u3"),
        ]
    )

    result = await timeline.blast_radius("CARD_DECLINED", hours=1)

    assert result.total_occurrences == 3
    assert result.affected_users == 2
    assert result.affected_cities == ["Delhi", "Mumbai"]
    assert result.affected_endpoints == ["POST /payment/process"]
    assert result.peak_time.count == 2
    assert result.estimated_revenue_loss == 100.0


async def test_blast_radius_unknown_code_is_empty(timeline):
    result = await timeline.blast_radius("NOPE")

    assert result.total_occurrences == 0
    assert result.peak_time is None


async def test_recent_error_sessions(timeline, log_store):
    await log_store.insert_many(
        [
            make_log("ERROR", "first", at=T0 - timedelta(minutes=30), session_id="s1", user_id="u1"),
            make_log("CRITICAL", "second", at=T0 - timedelta(minutes=20), session_id="s1", user_id="u1"),
            make_log("ERROR", "other", at=T0 - timedelta(minutes=5), session_id="s2", user_id="u2"),
            make_log("INFO", "fine", at=T0 - timedelta(minutes=5), session_id="s3"),
            make_log("ERROR", "no session", at=T0 - timedelta(minutes=5)),
        ]
    )

    sessions = await timeline.recent_error_sessions(hours=24)

    assert [s.session_id for s in sessions] == ["s2", "s1"]
    s1 = sessions[1]
    assert s1.error_count == 2
    assert s1.first_error == T0 - timedelta(minutes=30)
