"""Alert fan-out to the configured sinks."""

from __future__ import annotations

from typing import TYPE_CHECKING

from observability.logger import get_logger

if TYPE_CHECKING:
    from protocols.alert_sink import AlertSink
    from schemas.alerts import Alert

log = get_logger(__name__)


async def emit_alert(
    alert: Alert,
    sinks: list[AlertSink],
) -> bool:
    """Send alert to all configured sinks. A failing sink is logged, never raised."""
    success = True
    for sink in sinks:
        try:
            sent = await sink.send(alert)
            if not sent:
                log.warning("alert.sink.failed", sink=type(sink).__name__, alert_id=alert.alert_id)
                success = False
        except Exception as e:
            log.error(
                "alert.sink.error",
                sink=type(sink).__name__,
                alert_id=alert.alert_id,
                error=str(e),
            )
            success = False

    log.info(
        "alert.emitted",
        alert_id=alert.alert_id,
        type=alert.type,
        severity=alert.severity,
        affected_logs=alert.affected_logs,
        affected_users=alert.affected_users,
        sinks=len(sinks),
    )
    return success
