from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schemas.alerts import Alert

_SEVERITY_COLORS = {
    "CRITICAL": "bold white on dark_red",
    "HIGH": "bold bright_red",
    "MEDIUM": "bold yellow",
    "LOW": "bold green",
}

# Border colors: softer tones so the panel text stays readable
_BORDER_COLORS = {
    "CRITICAL": "red",
    "HIGH": "bright_red",
    "MEDIUM": "yellow",
    "LOW": "green",
}


class TerminalSink:
    """Prints alerts to the terminal as Rich panels. Implements AlertSink protocol."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    async def send(self, alert: Alert) -> bool:
        text_color = _SEVERITY_COLORS.get(alert.severity, "bold white")
        border_color = _BORDER_COLORS.get(alert.severity, "white")

        steps = "\n".join(f"  {i}. {s}" for i, s in enumerate(alert.runbook, 1)) or "  none"
        top = ", ".join(f"{t.error} ({t.count})" for t in alert.top_errors) or "n/a"
        revenue = (
            f"\n[bold]Est. revenue loss:[/bold] ${alert.estimated_revenue_loss:,.2f}"
            if alert.estimated_revenue_loss is not None
            else ""
        )

        body = (
            f"[bold]Type:[/bold] {alert.type}\n"
            f"[bold]Severity:[/bold] [{text_color}]{alert.severity}[/{text_color}]\n"
            f"[bold]Affected:[/bold] {alert.affected_logs} logs, {alert.affected_users} users"
            f"{revenue}\n"
            f"\n[bold]What:[/bold]\n  {alert.description}\n"
            f"\n[bold]Top errors:[/bold]\n  {top}\n"
            f"\n[bold]Action:[/bold]\n  {alert.suggested_action}\n"
            f"\n[bold]Runbook:[/bold]\n{steps}"
        )

        panel = Panel(
            body,
            title=f"ALERT: {alert.title}",
            subtitle=alert.alert_id,
            border_style=border_color,
            padding=(1, 2),
        )
        self.console.print(panel)
        return True

    def print_summary_table(self, alerts: list[Alert]) -> None:
        """Print a one-row-per-alert summary of an evaluation pass."""
        if not alerts:
            self.console.print("[dim]No alerts emitted this pass.[/dim]")
            return

        table = Table(title="Alert summary", show_lines=True)
        table.add_column("Type", style="cyan")
        table.add_column("Severity")
        table.add_column("Logs", justify="right")
        table.add_column("Users", justify="right")
        table.add_column("Title")

        for a in alerts:
            color = _SEVERITY_COLORS.get(a.severity, "white")
            table.add_row(
                a.type,
                f"[{color}]{a.severity}[/{color}]",
                str(a.affected_logs),
                str(a.affected_users),
                a.title,
            )

        self.console.print(table)
