"""Domain errors raised by the core.

Not-found conditions are not errors: lookups return ``None`` and the HTTP
boundary answers 404.
"""

from __future__ import annotations


class LogPulseError(Exception):
    """Base class for logpulse domain errors."""


class StoreWriteError(LogPulseError):
    """A store rejected a write (bulk or single)."""

    def __init__(self, message: str, *, failed_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.failed_ids = failed_ids or []


class AccumulatorClosedError(LogPulseError):
    """Events were submitted after the batch accumulator shut down."""


class InvalidAlertTransition(LogPulseError):
    """An alert status change outside active -> acknowledged -> resolved."""

    def __init__(self, alert_id: str, current: str, requested: str) -> None:
        super().__init__(f"Alert {alert_id} cannot move from {current} to {requested}")
        self.alert_id = alert_id
        self.current = current
        self.requested = requested
