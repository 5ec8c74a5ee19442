"""One end-to-end pass on synthetic logs: ingest, analyse, alert. No credentials needed.

Usage:
    python -m scripts.run_analysis_once --count 40 --incident
"""

from __future__ import annotations

import asyncio
import random

import click
from rich.console import Console
from rich.table import Table

from config.settings import get_settings
from observability.logger import setup_logging
from pipeline.engine import LogPulseEngine
from providers.dummy_llm import DummyLLM
from providers.terminal_sink import TerminalSink
from scripts.generate_logs import generate_logs

console = Console()

_SEVERITY_COLORS = {
    "critical": "bold white on red",
    "high": "bold red",
    "medium": "bold yellow",
    "low": "bold green",
}


def build_clusters_table(summaries) -> Table:
    table = Table(title="Clusters", show_lines=True)
    table.add_column("Cluster", style="cyan")
    table.add_column("Logs", justify="right")
    table.add_column("Avg score", justify="right")
    table.add_column("Max severity")
    table.add_column("Root cause", max_width=50)
    for c in summaries:
        color = _SEVERITY_COLORS.get(c.max_severity, "white")
        table.add_row(
            c.cluster_name,
            str(c.count),
            f"{c.avg_anomaly_score:.2f}",
            f"[{color}]{c.max_severity.upper()}[/{color}]",
            c.root_cause,
        )
    return table


def build_observability_table(engine: LogPulseEngine, result) -> Table:
    table = Table(title="Analysis pass", show_lines=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Run ID", result.run_id[:12] + "...")
    table.add_row("Logs processed", str(result.processed))
    table.add_row("Persisted", str(result.persisted))
    table.add_row("Anomalies", str(result.anomalies))
    table.add_row("Clusters", str(result.clusters))
    table.add_row("Clusters explained", ", ".join(result.clusters_enriched) or "-")
    table.add_row("Fallback", result.fallback_reason or "no")
    record = engine.analyzer.last_record
    if record is not None:
        table.add_row("Oracle calls", str(record.total_llm_calls))
        table.add_row("Input tokens", f"{record.total_input_tokens:,}")
        table.add_row("Output tokens", f"{record.total_output_tokens:,}")
        table.add_row("Est. cost", f"${record.total_cost_usd:.4f}")
        table.add_row("Avg latency", f"{record.avg_latency_ms:.1f}ms")
    return table


async def run_once(count: int, incident: bool) -> None:
    settings = get_settings().model_copy(update={"store_backend": "memory"})
    setup_logging(level=settings.log_level, fmt="console")

    sink = TerminalSink(console)
    engine = LogPulseEngine(settings, llm=DummyLLM(), sinks=[sink])
    await engine.start(background_jobs=False)
    try:
        logs = generate_logs(count, incident_mode=incident)
        ack = engine.ingestion.submit_batch(logs)
        console.print(f"[bold]Ingest:[/bold] {ack.message}")
        await engine.ingestion.drain()
        await engine.accumulator.flush()

        result = await engine.run_analysis_pass()
        console.print(build_observability_table(engine, result))
        console.print(build_clusters_table(await engine.stores.analyzed.cluster_summaries()))

        evaluation = await engine.alert_engine.evaluate_alerts()
        console.print(
            f"[bold]Error rate:[/bold] {evaluation.current_error_rate:.1%} "
            f"(previous {evaluation.previous_error_rate:.1%})"
        )
        sink.print_summary_table(evaluation.alerts)
    finally:
        await engine.stop()


@click.command("run-analysis-once")
@click.option("--count", "-n", default=40, help="Synthetic logs to generate.")
@click.option("--incident", is_flag=True, help="Include an outage scenario.")
@click.option("--seed", type=int, default=None, help="Random seed for reproducibility.")
def main(count: int, incident: bool, seed: int | None) -> None:
    if seed is not None:
        random.seed(seed)
    asyncio.run(run_once(count, incident))


if __name__ == "__main__":
    main()
