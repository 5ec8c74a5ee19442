"""Tests for alert delivery payloads and the prompt registry."""

from __future__ import annotations

import pytest

from config.prompts.registry import available_prompts, format_prompt
from providers.slack_sink import SlackSink
from schemas.alerts import Alert, TopError


@pytest.fixture
def alert() -> Alert:
    return Alert(
        alert_id="alert_1772452800000_impact_a1b2c3",
        type="HIGH_USER_IMPACT",
        severity="HIGH",
        title="High User Impact: 12 users affected",
        description="12 distinct users hit errors in the last 5 minutes",
        affected_logs=30,
        affected_users=12,
        top_errors=[TopError(error="CARD_DECLINED", count=20)],
        suggested_action="Check the payment gateway",
        runbook=["Open the gateway dashboard", "Fail over to the backup provider"],
        estimated_revenue_loss=600.0,
    )


def test_slack_payload_blocks(alert):
    payload = SlackSink("https://hooks.slack.invalid/x").build_payload(alert)

    assert payload["text"] == alert.title
    texts = [b.get("text", {}).get("text", "") for b in payload["blocks"]]
    assert any("CARD_DECLINED" in t for t in texts)
    assert any("1. Open the gateway dashboard" in t for t in texts)
    fields = next(b["fields"] for b in payload["blocks"] if "fields" in b)
    assert {"type": "mrkdwn", "text": "*Est. revenue loss:*\n$600.00"} in fields


def test_slack_payload_without_revenue(alert):
    payload = SlackSink("https://hooks.slack.invalid/x").build_payload(
        alert.model_copy(update={"estimated_revenue_loss": None, "runbook": []})
    )

    fields = next(b["fields"] for b in payload["blocks"] if "fields" in b)
    assert len(fields) == 4


def test_prompt_registry_lists_v1_templates():
    assert available_prompts() == ["analyze_batch", "copilot", "explain_cluster", "search"]
    assert available_prompts("v99") == []


def test_missing_placeholder_raises():
    with pytest.raises(KeyError):
        format_prompt("search")
