"""Session timelines, error blast radius and recent error sessions."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING

from observability.logger import get_logger
from pipeline.alert_engine import linear_revenue_loss
from schemas.events import LogEvent, LogQuery, utcnow
from schemas.search import (
    BlastRadius,
    ErrorAnalysis,
    ErrorSession,
    PeakMinute,
    SessionErrorSample,
    SessionTimeline,
    TimelineEntry,
)

if TYPE_CHECKING:
    from protocols.storage import AnalyzedLogStore, LogStore

log = get_logger(__name__)

# endpoint fragment -> action, first match wins
_ENDPOINT_ACTIONS: list[tuple[str, str]] = [
    ("/cart", "Added to cart"),
    ("/payment", "Payment attempt"),
    ("/events", "Browsed events"),
    ("/login", "Logged in"),
]


def derive_user_action(event: LogEvent) -> str:
    endpoint = event.endpoint or ""
    for fragment, action in _ENDPOINT_ACTIONS:
        if fragment in endpoint:
            return action
    # "GET /" and "/" both mean the homepage
    if endpoint.split(" ", 1)[-1] == "/":
        return "Visited homepage"
    if event.level == "ERROR":
        return "Error occurred"
    if event.level == "CRITICAL":
        return "Critical error"
    return event.message[:50]


def format_duration(start: datetime, end: datetime) -> str:
    seconds = int((end - start).total_seconds())
    minutes, seconds = divmod(max(seconds, 0), 60)
    return f"{minutes}m {seconds}s" if minutes else f"{seconds}s"


class TimelineService:
    def __init__(
        self,
        logs: LogStore,
        analyzed: AnalyzedLogStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        revenue_loss: Callable[[int], float] | None = None,
    ) -> None:
        self.logs = logs
        self.analyzed = analyzed
        self.clock = clock
        self.revenue_loss = revenue_loss or partial(linear_revenue_loss, unit_loss=50.0)

    async def session_timeline(self, session_id: str) -> SessionTimeline | None:
        """Chronological journey of one session. ``None`` if the session has no logs."""
        events = await self.logs.find(LogQuery(session_id=session_id, sort="oldest"))
        if not events:
            return None

        error_ids = [e.log_id for e in events if e.is_error]
        findings = {
            a.original_log_id: a for a in await self.analyzed.find_by_original_ids(error_ids)
        } if error_ids else {}

        entries = [
            TimelineEntry(
                timestamp=e.timestamp,
                action=derive_user_action(e),
                level=e.level,
                message=e.message,
                endpoint=e.endpoint,
                city=e.city,
                response_time=e.response_time,
                error_code=e.error_code,
                analysis=findings.get(e.log_id),
            )
            for e in events
        ]

        first_error_at = next((i for i, e in enumerate(events) if e.is_error), None)
        error_analysis: ErrorAnalysis | None = None
        if first_error_at is not None:
            failed = events[first_error_at]
            finding = findings.get(failed.log_id)
            leading = [derive_user_action(e) for e in events[max(0, first_error_at - 5):first_error_at]]
            error_analysis = ErrorAnalysis(
                what_happened=failed.message,
                why_it_happened=finding.root_cause if finding else None,
                how_to_fix=finding.suggested_fix if finding else None,
                user_impact=(
                    f"User completed: {' → '.join(leading) or 'nothing'}, "
                    f"but failed at: {derive_user_action(failed)}. "
                    "This likely caused frustration and potential revenue loss."
                ),
                leading_actions=leading,
            )

        return SessionTimeline(
            session_id=session_id,
            total_events=len(events),
            duration=format_duration(events[0].timestamp, events[-1].timestamp),
            user_location=next((e.city for e in events if e.city), None),
            error_occurred=first_error_at is not None,
            error_timestamp=events[first_error_at].timestamp if first_error_at is not None else None,
            timeline=entries,
            error_analysis=error_analysis,
        )

    async def blast_radius(self, error_code: str, hours: int = 1) -> BlastRadius:
        since = self.clock() - timedelta(hours=hours)
        events = await self.logs.find(LogQuery(error_code=error_code, start=since, sort="oldest"))

        users = {e.user_id for e in events if e.user_id}
        per_minute = Counter(e.timestamp.isoformat()[:16] for e in events)
        peak = per_minute.most_common(1)

        log.info("timeline.blast_radius", error_code=error_code, hours=hours, occurrences=len(events))
        return BlastRadius(
            error_code=error_code,
            hours=hours,
            affected_users=len(users),
            affected_cities=sorted({e.city for e in events if e.city}),
            affected_endpoints=sorted({e.endpoint for e in events if e.endpoint}),
            total_occurrences=len(events),
            peak_time=PeakMinute(time=peak[0][0], count=peak[0][1]) if peak else None,
            per_minute=dict(sorted(per_minute.items())),
            estimated_revenue_loss=self.revenue_loss(len(users)),
        )

    async def recent_error_sessions(self, hours: int = 24, limit: int = 10) -> list[ErrorSession]:
        """Sessions that hit ERROR/CRITICAL logs in the window, most recent failure first."""
        since = self.clock() - timedelta(hours=hours)
        errors = await self.logs.find(
            LogQuery(levels=["ERROR", "CRITICAL"], start=since, sort="newest", limit=limit * 3)
        )

        sessions: dict[str, ErrorSession] = {}
        for e in errors:
            if not e.session_id:
                continue
            session = sessions.get(e.session_id)
            if session is None:
                session = sessions[e.session_id] = ErrorSession(
                    session_id=e.session_id,
                    user_id=e.user_id,
                    city=e.city,
                    first_error=e.timestamp,
                )
            session.error_count += 1
            session.first_error = min(session.first_error, e.timestamp)
            if len(session.errors) < 3:
                session.errors.append(
                    SessionErrorSample(level=e.level, message=e.message, timestamp=e.timestamp)
                )
        return list(sessions.values())[:limit]
