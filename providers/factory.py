"""Build stores, oracle and alert sinks from settings.

Vendor SDKs are imported lazily so a dry run never needs credentials.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

from observability.logger import get_logger
from providers.dummy_llm import DummyLLM
from providers.memory_store import MemoryAlertStore, MemoryAnalyzedLogStore, MemoryLogStore

if TYPE_CHECKING:
    from config.settings import Settings
    from protocols.alert_sink import AlertSink
    from protocols.llm import LLMProvider
    from protocols.storage import AlertStore, AnalyzedLogStore, LogStore

log = get_logger(__name__)


class Stores(NamedTuple):
    logs: LogStore
    analyzed: AnalyzedLogStore
    alerts: AlertStore


def build_stores(settings: Settings) -> Stores:
    if settings.store_backend == "bigquery":
        if not settings.gcp_project_id:
            raise ValueError("STORE_BACKEND=bigquery requires GCP_PROJECT_ID")
        from google.cloud import bigquery

        from providers.bigquery_store import (
            BigQueryAlertStore,
            BigQueryAnalyzedLogStore,
            BigQueryLogStore,
        )

        client = bigquery.Client(project=settings.gcp_project_id)
        log.info("stores.bigquery", dataset=settings.bq_dataset)
        return Stores(
            logs=BigQueryLogStore(client, settings.bq_logs_table_id, settings.bq_analyzed_table_id),
            analyzed=BigQueryAnalyzedLogStore(
                client, settings.bq_analyzed_table_id, settings.bq_explanations_table_id
            ),
            alerts=BigQueryAlertStore(client, settings.bq_alerts_table_id),
        )

    log.info("stores.memory")
    analyzed = MemoryAnalyzedLogStore()
    return Stores(
        logs=MemoryLogStore(analyzed=analyzed),
        analyzed=analyzed,
        alerts=MemoryAlertStore(),
    )


def build_llm(settings: Settings) -> LLMProvider:
    """Pick the oracle; a missing API key degrades to the dummy oracle."""
    if settings.llm_provider == "anthropic" and settings.anthropic_api_key:
        from providers.anthropic_llm import AnthropicLLM

        return AnthropicLLM(
            api_key=settings.anthropic_api_key,
            model=settings.llm_anthropic_model,
            timeout=settings.llm_timeout_seconds,
        )
    if settings.llm_provider == "openai" and settings.openai_api_key:
        from providers.openai_llm import OpenAILLM

        return OpenAILLM(
            api_key=settings.openai_api_key,
            model=settings.llm_openai_model,
            base_url=settings.openai_base_url or None,
            timeout=settings.llm_timeout_seconds,
        )
    if settings.llm_provider != "dummy":
        log.warning("llm.missing_api_key", provider=settings.llm_provider, using="dummy")
    return DummyLLM()


def build_alert_sinks(settings: Settings, *, terminal: bool = False) -> list[AlertSink]:
    sinks: list[AlertSink] = []
    if terminal:
        from providers.terminal_sink import TerminalSink

        sinks.append(TerminalSink())
    if settings.slack_webhook_url:
        from providers.slack_sink import SlackSink

        sinks.append(SlackSink(settings.slack_webhook_url))
    return sinks
