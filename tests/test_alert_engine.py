"""Tests for the smart alert engine: rules, cooldown and alert lifecycle."""

from __future__ import annotations

import re
from datetime import timedelta

import pytest

from pipeline.alert_engine import AlertRules, SmartAlertEngine, error_rate, top_errors
from pipeline.errors import InvalidAlertTransition
from providers.memory_store import MemoryAlertStore
from tests.factories import T0, make_log


class _RecordingSink:
    def __init__(self) -> None:
        self.sent = []

    async def send(self, alert) -> bool:
        self.sent.append(alert)
        return True


class _BrokenSink:
    async def send(self, alert) -> bool:
        raise RuntimeError("webhook down")


def _payment_failures(n: int, *, at=T0 - timedelta(minutes=1)):
    return [
        make_log(
            "ERROR",
            "Payment failed",
            at=at,
            endpoint="POST /payment/process",
            user_id=f"user_{i}",
        )
        for i in range(n)
    ]


@pytest.fixture
def sink() -> _RecordingSink:
    return _RecordingSink()


@pytest.fixture
def engine(log_store, alert_store, clock, sink) -> SmartAlertEngine:
    return SmartAlertEngine(log_store, alert_store, rules=AlertRules(), sinks=[sink], clock=clock)


def test_error_rate_counts_error_and_critical():
    events = [make_log("ERROR"), make_log("CRITICAL"), make_log("INFO")]

    assert error_rate(events) == pytest.approx(2 / 3)
    assert error_rate([]) == 0.0


def test_top_errors_prefers_error_code():
    events = [
        make_log(error_code="CARD_DECLINED"),
        make_log(error_code="CARD_DECLINED"),
        make_log(message="Something broke"),
    ]

    top = top_errors(events)

    assert (top[0].error, top[0].count) == ("CARD_DECLINED", 2)
    assert top[1].error == "Something broke"


async def test_payment_outage_raises_endpoint_and_user_impact(engine, log_store, sink):
    await log_store.insert_many(_payment_failures(6))

    result = await engine.evaluate_alerts()

    by_type = {a.type: a for a in result.alerts}
    assert set(by_type) == {"CRITICAL_ENDPOINT_FAILURE", "HIGH_USER_IMPACT"}
    assert by_type["CRITICAL_ENDPOINT_FAILURE"].severity == "CRITICAL"
    assert by_type["CRITICAL_ENDPOINT_FAILURE"].affected_endpoints == ["POST /payment/process"]
    assert by_type["HIGH_USER_IMPACT"].affected_users == 6
    assert by_type["HIGH_USER_IMPACT"].estimated_revenue_loss == 300.0
    assert re.fullmatch(r"alert_\d+_endpoint_[0-9a-f]{6}", by_type["CRITICAL_ENDPOINT_FAILURE"].alert_id)
    assert len(sink.sent) == 2
    assert len(engine.alerts) == 2


async def test_cooldown_suppresses_then_releases(engine, log_store, clock):
    await log_store.insert_many(_payment_failures(6))
    first = await engine.evaluate_alerts()
    assert len(first.alerts) == 2

    clock.advance(minutes=2)
    second = await engine.evaluate_alerts()
    assert second.alerts == []
    assert set(second.suppressed_types) == {"CRITICAL_ENDPOINT_FAILURE", "HIGH_USER_IMPACT"}
    assert engine.cooldown_remaining("HIGH_USER_IMPACT") == pytest.approx(180.0)

    clock.advance(minutes=4)
    await log_store.insert_many(_payment_failures(6, at=clock() - timedelta(seconds=30)))
    third = await engine.evaluate_alerts()
    assert {a.type for a in third.alerts} == {"CRITICAL_ENDPOINT_FAILURE", "HIGH_USER_IMPACT"}


async def test_error_spike_against_previous_window(engine, log_store):
    previous = [make_log("INFO", "ok", at=T0 - timedelta(minutes=7)) for _ in range(9)]
    previous.append(make_log("ERROR", "Search failed", at=T0 - timedelta(minutes=7), user_id="u1"))
    recent = [make_log("INFO", "ok", at=T0 - timedelta(minutes=1)) for _ in range(5)]
    recent += [
        make_log("ERROR", "Search failed", at=T0 - timedelta(minutes=1), endpoint="GET /search", user_id="u1")
        for _ in range(5)
    ]
    await log_store.insert_many(previous + recent)

    result = await engine.evaluate_alerts()

    assert [a.type for a in result.alerts] == ["ERROR_SPIKE"]
    spike = result.alerts[0]
    assert spike.title == "Error Rate Spike Detected (+400%)"
    assert result.current_error_rate == 0.5
    assert result.previous_error_rate == 0.1
    assert result.baseline_error_rate == 0.1


async def test_high_value_codes_count_any_level(engine, log_store):
    await log_store.insert_many(
        [
            make_log("WARN", "Gateway slow", at=T0 - timedelta(minutes=2), error_code="PAYMENT_GATEWAY_TIMEOUT")
            for _ in range(5)
        ]
    )

    result = await engine.evaluate_alerts()

    assert [a.type for a in result.alerts] == ["HIGH_VALUE_ERROR"]
    assert result.alerts[0].top_errors[0].error == "PAYMENT_GATEWAY_TIMEOUT"


async def test_quiet_window_raises_nothing(engine, log_store):
    await log_store.insert_many([make_log("INFO", "ok", at=T0 - timedelta(minutes=1)) for _ in range(20)])

    result = await engine.evaluate_alerts()

    assert result.alerts == []
    assert result.recent_logs == 20


async def test_failed_persist_does_not_start_cooldown(log_store, clock, sink):
    class FlakyAlertStore(MemoryAlertStore):
        fail = True

        async def insert(self, alert):
            if self.fail:
                raise RuntimeError("store offline")
            await super().insert(alert)

    store = FlakyAlertStore()
    engine = SmartAlertEngine(log_store, store, sinks=[sink], clock=clock)
    await log_store.insert_many(_payment_failures(6))

    first = await engine.evaluate_alerts()
    store.fail = False
    second = await engine.evaluate_alerts()

    assert first.alerts == []
    assert len(second.alerts) == 2
    assert sink.sent == second.alerts


async def test_broken_sink_does_not_block_alert(log_store, alert_store, clock):
    engine = SmartAlertEngine(log_store, alert_store, sinks=[_BrokenSink()], clock=clock)
    await log_store.insert_many(_payment_failures(6))

    result = await engine.evaluate_alerts()

    assert len(result.alerts) == 2
    assert len(alert_store) == 2


async def test_acknowledge_then_resolve(engine, log_store, clock):
    await log_store.insert_many(_payment_failures(6))
    alert = (await engine.evaluate_alerts()).alerts[0]

    acked = await engine.acknowledge(alert.alert_id, by="alice")
    clock.advance(minutes=1)
    resolved = await engine.resolve(alert.alert_id, by="bob")

    assert acked.status == "acknowledged"
    assert acked.acknowledged_by == "alice"
    assert resolved.status == "resolved"
    assert resolved.resolved_by == "bob"
    assert resolved.resolved_at == clock()
    assert (await engine.alerts.get(alert.alert_id)).status == "resolved"


async def test_resolved_alert_is_terminal(engine, log_store):
    await log_store.insert_many(_payment_failures(6))
    alert = (await engine.evaluate_alerts()).alerts[0]
    await engine.resolve(alert.alert_id)

    with pytest.raises(InvalidAlertTransition):
        await engine.acknowledge(alert.alert_id)


async def test_unknown_alert_returns_none(engine):
    assert await engine.acknowledge("alert_missing") is None
    assert await engine.resolve("alert_missing") is None


async def test_queries_and_stats(engine, log_store):
    await log_store.insert_many(_payment_failures(6))
    alerts = (await engine.evaluate_alerts()).alerts
    await engine.acknowledge(alerts[0].alert_id)

    active = await engine.active_alerts()
    impact = await engine.alerts_by_type("HIGH_USER_IMPACT")
    stats = await engine.alert_stats(hours=24)

    assert len(active) == 1
    assert [a.type for a in impact] == ["HIGH_USER_IMPACT"]
    assert stats.total == 2
    assert stats.active == 1
    assert stats.acknowledged == 1
    assert stats.by_severity == {"CRITICAL": 1, "HIGH": 1}
