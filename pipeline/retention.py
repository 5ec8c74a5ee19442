"""Age-based retention for raw and analysed logs. Alerts are kept for audit."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from observability.logger import get_logger
from schemas.events import CleanupResult, utcnow

if TYPE_CHECKING:
    from protocols.storage import AnalyzedLogStore, LogStore

log = get_logger(__name__)


class RetentionService:
    def __init__(
        self,
        logs: LogStore,
        analyzed: AnalyzedLogStore,
        *,
        default_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.logs = logs
        self.analyzed = analyzed
        self.default_days = default_days
        self.clock = clock

    async def cleanup(self, days: int | None = None) -> CleanupResult:
        """Delete rows with ``timestamp`` strictly before now - ``days``."""
        days = self.default_days if days is None else days
        if days < 0:
            raise ValueError("days must be >= 0")
        cutoff = self.clock() - timedelta(days=days)

        logs_deleted = await self.logs.delete_older_than(cutoff)
        analyzed_deleted = await self.analyzed.delete_older_than(cutoff)

        log.info(
            "retention.cleanup.done",
            days=days,
            cutoff=cutoff.isoformat(),
            logs_deleted=logs_deleted,
            analyzed_deleted=analyzed_deleted,
        )
        return CleanupResult(
            cutoff=cutoff,
            days=days,
            logs_deleted=logs_deleted,
            analyzed_deleted=analyzed_deleted,
        )
