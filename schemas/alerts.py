"""Alert schemas and the alert lifecycle state machine."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from pipeline.errors import InvalidAlertTransition
from schemas.events import WireModel, utcnow

AlertType = Literal[
    "ERROR_SPIKE",
    "CRITICAL_ENDPOINT_FAILURE",
    "HIGH_VALUE_ERROR",
    "HIGH_USER_IMPACT",
]
AlertSeverity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
AlertStatus = Literal["active", "acknowledged", "resolved"]

# resolved is terminal
_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"acknowledged", "resolved"}),
    "acknowledged": frozenset({"resolved"}),
    "resolved": frozenset(),
}


class TopError(WireModel):
    error: str
    count: int


class Alert(WireModel):
    """One detected incident."""

    alert_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    affected_logs: int = 0
    affected_users: int = 0
    affected_endpoints: list[str] = Field(default_factory=list)
    top_errors: list[TopError] = Field(default_factory=list)
    suggested_action: str = ""
    runbook: list[str] = Field(default_factory=list)
    estimated_revenue_loss: float | None = None
    status: AlertStatus = "active"
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, float | int | str] = Field(default_factory=dict)

    def can_transition_to(self, status: AlertStatus) -> bool:
        return status in _TRANSITIONS[self.status]

    def transition_to(
        self,
        status: AlertStatus,
        *,
        by: str | None = None,
        at: datetime | None = None,
    ) -> Alert:
        """Return a copy moved to ``status``; illegal moves raise InvalidAlertTransition."""
        if not self.can_transition_to(status):
            raise InvalidAlertTransition(self.alert_id, self.status, status)
        when = at or utcnow()
        changes: dict[str, object] = {"status": status}
        if status == "acknowledged":
            changes.update(acknowledged_at=when, acknowledged_by=by)
        elif status == "resolved":
            changes.update(resolved_at=when, resolved_by=by)
        return self.model_copy(update=changes)


class AlertQuery(BaseModel):
    since: datetime | None = None
    status: AlertStatus | None = None
    type: AlertType | None = None
    limit: int | None = Field(default=None, ge=1)

    def matches(self, alert: Alert) -> bool:
        if self.since is not None and alert.created_at < self.since:
            return False
        if self.status is not None and alert.status != self.status:
            return False
        if self.type is not None and alert.type != self.type:
            return False
        return True


class AlertStats(WireModel):
    hours: int
    total: int = 0
    active: int = 0
    acknowledged: int = 0
    resolved: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)


class AlertEvaluationResult(WireModel):
    evaluated_at: datetime = Field(default_factory=utcnow)
    alerts: list[Alert] = Field(default_factory=list)
    suppressed: int = 0
    suppressed_types: list[AlertType] = Field(default_factory=list)
    current_error_rate: float = 0.0
    previous_error_rate: float = 0.0
    baseline_error_rate: float = 0.0
    recent_logs: int = 0
    previous_logs: int = 0
