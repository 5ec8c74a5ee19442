"""Slack webhook alert sink."""

from __future__ import annotations

import httpx

from observability.logger import get_logger
from schemas.alerts import Alert

log = get_logger(__name__)


class SlackSink:
    """Sends alerts to Slack via incoming webhook. Implements AlertSink protocol."""

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    def build_payload(self, alert: Alert) -> dict:
        runbook = "\n".join(f"{i}. {s}" for i, s in enumerate(alert.runbook, 1)) or "None"
        top = "\n".join(f"• `{t.error}` x{t.count}" for t in alert.top_errors) or "n/a"
        fields = [
            {"type": "mrkdwn", "text": f"*Type:*\n{alert.type}"},
            {"type": "mrkdwn", "text": f"*Severity:*\n{alert.severity}"},
            {"type": "mrkdwn", "text": f"*Affected logs:*\n{alert.affected_logs}"},
            {"type": "mrkdwn", "text": f"*Affected users:*\n{alert.affected_users}"},
        ]
        if alert.estimated_revenue_loss is not None:
            fields.append(
                {"type": "mrkdwn", "text": f"*Est. revenue loss:*\n${alert.estimated_revenue_loss:,.2f}"}
            )

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"🚨 {alert.title}"[:150]},
            },
            {"type": "section", "fields": fields},
            {"type": "section", "text": {"type": "mrkdwn", "text": alert.description}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Top errors:*\n{top}"}},
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*{alert.suggested_action}*\n{runbook}"},
            },
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"`{alert.alert_id}`"}],
            },
        ]
        return {"text": alert.title, "blocks": blocks}

    async def send(self, alert: Alert) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self.webhook_url,
                    json=self.build_payload(alert),
                    timeout=self.timeout,
                )
                resp.raise_for_status()
                log.info("slack.send.success", alert_id=alert.alert_id)
                return True
        except httpx.HTTPError as e:
            log.error("slack.send.failed", alert_id=alert.alert_id, error=str(e))
            return False
