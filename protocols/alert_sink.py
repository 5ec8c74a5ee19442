"""Alert sink protocol: where emitted alerts are announced."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from schemas.alerts import Alert


@runtime_checkable
class AlertSink(Protocol):
    """Any class that can deliver a freshly emitted alert. Returns False on delivery failure."""

    async def send(self, alert: Alert) -> bool: ...
