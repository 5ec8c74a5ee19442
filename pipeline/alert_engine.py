"""Smart alert engine: rule evaluation over rolling windows with cooldown.

Each pass compares the last ``window_minutes`` of logs ("recent") with the
window before it ("previous") and evaluates four independent rules:

- ERROR_SPIKE: error rate grew by more than ``spike_threshold`` relative to
  the previous window and is above ``min_error_rate``
- CRITICAL_ENDPOINT_FAILURE: at least ``endpoint_failure_min`` errors on a
  business-critical endpoint
- HIGH_VALUE_ERROR: at least ``high_value_min`` logs carrying a critical
  error code
- HIGH_USER_IMPACT: at least ``min_affected_users`` distinct users hit errors

Cooldown is per rule type: after an alert of type R is emitted, further R
alerts are suppressed until ``cooldown_seconds`` have elapsed.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING
from uuid import uuid4

from pydantic import BaseModel, Field

from observability.logger import get_logger
from pipeline.alerter import emit_alert
from schemas.alerts import (
    Alert,
    AlertEvaluationResult,
    AlertQuery,
    AlertStats,
    AlertType,
    TopError,
)
from schemas.events import LogEvent, LogQuery, utcnow

if TYPE_CHECKING:
    from config.settings import Settings
    from protocols.alert_sink import AlertSink
    from protocols.storage import AlertStore, LogStore

log = get_logger(__name__)

Clock = Callable[[], datetime]
RevenueLossFn = Callable[[int], float]

_ID_SUFFIX: dict[str, str] = {
    "ERROR_SPIKE": "spike",
    "CRITICAL_ENDPOINT_FAILURE": "endpoint",
    "HIGH_VALUE_ERROR": "highvalue",
    "HIGH_USER_IMPACT": "impact",
}

_RUNBOOKS: dict[str, list[str]] = {
    "ERROR_SPIKE": [
        "Check recent deployments or config changes",
        "Review infrastructure metrics (CPU, memory, network)",
        "Check external service status",
        "Consider rollback if errors persist",
    ],
    "CRITICAL_ENDPOINT_FAILURE": [
        "Alert on-call engineer immediately",
        "Check payment gateway / auth service status",
        "Enable backup systems if available",
        "Notify customer support team",
    ],
    "HIGH_VALUE_ERROR": [
        "Check payment gateway connectivity",
        "Review database connection pool",
        "Check authentication service health",
        "Consider enabling circuit breaker",
    ],
    "HIGH_USER_IMPACT": [
        "Notify customer support team",
        "Prepare customer communication",
        "Fix underlying issue ASAP",
        "Consider compensation for affected users",
    ],
}


def linear_revenue_loss(affected_users: int, unit_loss: float = 50.0) -> float:
    """Placeholder cost model: every affected user is worth ``unit_loss``."""
    return round(affected_users * unit_loss, 2)


def error_rate(events: list[LogEvent]) -> float:
    """(ERROR + CRITICAL) / total; 0.0 for an empty window."""
    if not events:
        return 0.0
    return sum(1 for e in events if e.is_error) / len(events)


def top_errors(events: Iterable[LogEvent], limit: int = 3) -> list[TopError]:
    counts = Counter(e.error_key() for e in events)
    return [TopError(error=k, count=n) for k, n in counts.most_common(limit)]


def _distinct(values: Iterable[str | None]) -> list[str]:
    return sorted({v for v in values if v})


def new_alert_id(alert_type: str, now: datetime) -> str:
    return f"alert_{int(now.timestamp() * 1000)}_{_ID_SUFFIX[alert_type]}_{uuid4().hex[:6]}"


class AlertRules(BaseModel):
    window_minutes: int = 5
    cooldown_seconds: float = 300.0
    spike_threshold: float = 0.5
    min_error_rate: float = 0.1
    critical_endpoints: list[str] = Field(
        default_factory=lambda: ["/payment", "/checkout", "/login", "/api/payment"]
    )
    critical_error_codes: list[str] = Field(
        default_factory=lambda: [
            "PAYMENT_GATEWAY_DOWN",
            "DATABASE_UNAVAILABLE",
            "AUTH_SERVICE_DOWN",
            "CARD_DECLINED",
            "PAYMENT_GATEWAY_TIMEOUT",
        ]
    )
    min_affected_users: int = 5
    endpoint_failure_min: int = 3
    high_value_min: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> AlertRules:
        return cls(
            window_minutes=settings.alert_window_minutes,
            cooldown_seconds=settings.alert_cooldown_seconds,
            spike_threshold=settings.alert_spike_threshold,
            min_error_rate=settings.alert_min_error_rate,
            critical_endpoints=settings.alert_critical_endpoints,
            critical_error_codes=settings.alert_critical_error_codes,
            min_affected_users=settings.alert_min_affected_users,
            endpoint_failure_min=settings.alert_endpoint_failure_min,
            high_value_min=settings.alert_high_value_min,
        )


class SmartAlertEngine:
    """One instance per process. Owns the cooldown map; nothing else writes it."""

    def __init__(
        self,
        logs: LogStore,
        alerts: AlertStore,
        *,
        rules: AlertRules | None = None,
        sinks: list[AlertSink] | None = None,
        clock: Clock = utcnow,
        revenue_loss: RevenueLossFn | None = None,
    ) -> None:
        self.logs = logs
        self.alerts = alerts
        self.rules = rules or AlertRules()
        self.sinks = sinks or []
        self.clock = clock
        self.revenue_loss: RevenueLossFn = revenue_loss or partial(linear_revenue_loss, unit_loss=50.0)
        self.baseline_error_rate = 0.0
        self._cooldowns: dict[str, datetime] = {}
        self._evaluating = asyncio.Lock()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate_alerts(self) -> AlertEvaluationResult:
        async with self._evaluating:
            now = self.clock()
            window = timedelta(minutes=self.rules.window_minutes)

            recent = await self.logs.find(LogQuery(start=now - window, end=now, sort="oldest"))
            previous = await self.logs.find(
                LogQuery(start=now - 2 * window, end=now - window, end_inclusive=False, sort="oldest")
            )
            current_rate = error_rate(recent)
            previous_rate = error_rate(previous)
            if self.baseline_error_rate == 0.0 and previous:
                self.baseline_error_rate = previous_rate

            recent_errors = [e for e in recent if e.is_error]
            candidates = [
                alert
                for alert in (
                    self._check_spike(now, recent_errors, current_rate, previous_rate),
                    self._check_critical_endpoints(now, recent_errors),
                    self._check_high_value_errors(now, recent),
                    self._check_user_impact(now, recent_errors),
                )
                if alert is not None
            ]

            emitted: list[Alert] = []
            suppressed: list[AlertType] = []
            for alert in candidates:
                if self._in_cooldown(alert.type, now):
                    suppressed.append(alert.type)
                    log.info(
                        "alerts.suppressed",
                        type=alert.type,
                        last_fired=self._cooldowns[alert.type].isoformat(),
                    )
                    continue
                try:
                    await self.alerts.insert(alert)
                except Exception as e:
                    # Not recorded in the cooldown map, so the next pass may fire it again
                    log.error(
                        "alerts.persist.failed", alert_id=alert.alert_id, type=alert.type, error=str(e)
                    )
                    continue
                self._cooldowns[alert.type] = now
                emitted.append(alert)
                await emit_alert(alert, self.sinks)

            log.info(
                "alerts.evaluate.done",
                recent_logs=len(recent),
                previous_logs=len(previous),
                current_error_rate=round(current_rate, 4),
                previous_error_rate=round(previous_rate, 4),
                emitted=len(emitted),
                suppressed=len(suppressed),
            )
            return AlertEvaluationResult(
                evaluated_at=now,
                alerts=emitted,
                suppressed=len(suppressed),
                suppressed_types=suppressed,
                current_error_rate=round(current_rate, 4),
                previous_error_rate=round(previous_rate, 4),
                baseline_error_rate=round(self.baseline_error_rate, 4),
                recent_logs=len(recent),
                previous_logs=len(previous),
            )

    def _in_cooldown(self, alert_type: str, now: datetime) -> bool:
        last = self._cooldowns.get(alert_type)
        if last is None:
            return False
        return (now - last).total_seconds() < self.rules.cooldown_seconds

    def cooldown_remaining(self, alert_type: str) -> float:
        """Seconds until ``alert_type`` may fire again (0.0 when it may fire now)."""
        last = self._cooldowns.get(alert_type)
        if last is None:
            return 0.0
        elapsed = (self.clock() - last).total_seconds()
        return max(0.0, self.rules.cooldown_seconds - elapsed)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _check_spike(
        self,
        now: datetime,
        recent_errors: list[LogEvent],
        current_rate: float,
        previous_rate: float,
    ) -> Alert | None:
        if previous_rate <= 0:
            return None
        increase = (current_rate - previous_rate) / previous_rate
        if increase <= self.rules.spike_threshold or current_rate <= self.rules.min_error_rate:
            return None
        return Alert(
            alert_id=new_alert_id("ERROR_SPIKE", now),
            type="ERROR_SPIKE",
            severity="HIGH",
            title=f"Error Rate Spike Detected (+{increase * 100:.0f}%)",
            description=f"Error rate jumped from {previous_rate * 100:.1f}% to {current_rate * 100:.1f}%",
            affected_logs=len(recent_errors),
            affected_users=len(_distinct(e.user_id for e in recent_errors)),
            affected_endpoints=_distinct(e.endpoint for e in recent_errors),
            top_errors=top_errors(recent_errors),
            suggested_action="Investigate top error patterns immediately",
            runbook=list(_RUNBOOKS["ERROR_SPIKE"]),
            created_at=now,
            metadata={
                "current_error_rate": round(current_rate, 4),
                "previous_error_rate": round(previous_rate, 4),
                "increase": round(increase, 4),
            },
        )

    def _check_critical_endpoints(self, now: datetime, recent_errors: list[LogEvent]) -> Alert | None:
        hits = [
            e for e in recent_errors
            if e.endpoint and any(critical in e.endpoint for critical in self.rules.critical_endpoints)
        ]
        if len(hits) < self.rules.endpoint_failure_min:
            return None
        endpoints = _distinct(e.endpoint for e in hits)
        return Alert(
            alert_id=new_alert_id("CRITICAL_ENDPOINT_FAILURE", now),
            type="CRITICAL_ENDPOINT_FAILURE",
            severity="CRITICAL",
            title="Critical Endpoint Failure",
            description=f"{len(hits)} failures on business-critical endpoints: {', '.join(endpoints)}",
            affected_logs=len(hits),
            affected_users=len(_distinct(e.user_id for e in hits)),
            affected_endpoints=endpoints,
            top_errors=top_errors(hits),
            suggested_action="IMMEDIATE ACTION REQUIRED - Revenue-impacting",
            runbook=list(_RUNBOOKS["CRITICAL_ENDPOINT_FAILURE"]),
            created_at=now,
        )

    def _check_high_value_errors(self, now: datetime, recent: list[LogEvent]) -> Alert | None:
        hits = [
            e for e in recent
            if e.error_code and any(code in e.error_code for code in self.rules.critical_error_codes)
        ]
        if len(hits) < self.rules.high_value_min:
            return None
        return Alert(
            alert_id=new_alert_id("HIGH_VALUE_ERROR", now),
            type="HIGH_VALUE_ERROR",
            severity="HIGH",
            title="Critical Error Code Detected",
            description=f"{len(hits)} occurrences of business-critical errors",
            affected_logs=len(hits),
            affected_users=len(_distinct(e.user_id for e in hits)),
            affected_endpoints=_distinct(e.endpoint for e in hits),
            top_errors=top_errors(hits),
            suggested_action="Review payment/auth systems immediately",
            runbook=list(_RUNBOOKS["HIGH_VALUE_ERROR"]),
            created_at=now,
        )

    def _check_user_impact(self, now: datetime, recent_errors: list[LogEvent]) -> Alert | None:
        users = _distinct(e.user_id for e in recent_errors)
        if len(users) < self.rules.min_affected_users:
            return None
        return Alert(
            alert_id=new_alert_id("HIGH_USER_IMPACT", now),
            type="HIGH_USER_IMPACT",
            severity="HIGH",
            title=f"Multiple Users Affected: {len(users)} users",
            description=f"{len(recent_errors)} errors affecting {len(users)} unique users",
            affected_logs=len(recent_errors),
            affected_users=len(users),
            affected_endpoints=_distinct(e.endpoint for e in recent_errors),
            top_errors=top_errors(recent_errors),
            suggested_action="High user impact - prioritize resolution",
            runbook=list(_RUNBOOKS["HIGH_USER_IMPACT"]),
            estimated_revenue_loss=self.revenue_loss(len(users)),
            created_at=now,
        )

    # ------------------------------------------------------------------
    # Lifecycle and queries
    # ------------------------------------------------------------------

    async def acknowledge(self, alert_id: str, by: str = "operator") -> Alert | None:
        """Move an active alert to acknowledged. ``None`` if the id is unknown."""
        alert = await self.alerts.get(alert_id)
        if alert is None:
            return None
        updated = alert.transition_to("acknowledged", by=by, at=self.clock())
        await self.alerts.update(updated)
        log.info("alerts.acknowledged", alert_id=alert_id, by=by)
        return updated

    async def resolve(self, alert_id: str, by: str = "operator") -> Alert | None:
        """Move an active or acknowledged alert to resolved. ``None`` if the id is unknown."""
        alert = await self.alerts.get(alert_id)
        if alert is None:
            return None
        updated = alert.transition_to("resolved", by=by, at=self.clock())
        await self.alerts.update(updated)
        log.info("alerts.resolved", alert_id=alert_id, by=by)
        return updated

    async def recent_alerts(self, hours: int = 24, limit: int = 100) -> list[Alert]:
        since = self.clock() - timedelta(hours=hours)
        return await self.alerts.find(AlertQuery(since=since, limit=limit))

    async def active_alerts(self, hours: int | None = None) -> list[Alert]:
        since = self.clock() - timedelta(hours=hours) if hours is not None else None
        return await self.alerts.find(AlertQuery(since=since, status="active"))

    async def alerts_by_type(self, alert_type: AlertType, hours: int = 24, limit: int = 100) -> list[Alert]:
        since = self.clock() - timedelta(hours=hours)
        return await self.alerts.find(AlertQuery(since=since, type=alert_type, limit=limit))

    async def alert_stats(self, hours: int = 24) -> AlertStats:
        alerts = await self.alerts.find(AlertQuery(since=self.clock() - timedelta(hours=hours)))
        statuses = Counter(a.status for a in alerts)
        return AlertStats(
            hours=hours,
            total=len(alerts),
            active=statuses.get("active", 0),
            acknowledged=statuses.get("acknowledged", 0),
            resolved=statuses.get("resolved", 0),
            by_type=dict(Counter(a.type for a in alerts)),
            by_severity=dict(Counter(a.severity for a in alerts)),
        )
