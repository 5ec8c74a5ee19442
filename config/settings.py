"""Environment-driven configuration using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration comes from environment variables / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Classification oracle ---
    llm_provider: Literal["anthropic", "openai", "dummy"] = "dummy"
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    openai_base_url: str = ""
    llm_anthropic_model: str = "claude-sonnet-4-20250514"
    llm_openai_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 8000
    llm_timeout_seconds: float = 60.0
    llm_explain_timeout_seconds: float = 30.0
    llm_search_timeout_seconds: float = 30.0

    # --- Storage ---
    store_backend: Literal["memory", "bigquery"] = "memory"
    gcp_project_id: str = ""
    bq_dataset: str = "logpulse"
    bq_logs_table: str = "logs"
    bq_analyzed_table: str = "analyzed_logs"
    bq_alerts_table: str = "alerts"
    bq_explanations_table: str = "cluster_explanations"

    # --- Ingestion ---
    batch_max_size: int = 50
    batch_max_wait_seconds: float = 1.0
    batch_sweep_interval_seconds: float = 2.0
    ingest_job_attempts: int = 3

    # --- AI analysis ---
    analysis_batch_size: int = 50
    analysis_interval_seconds: float = 120.0
    analysis_initial_delay_seconds: float = 10.0
    cluster_explain_threshold: float = 0.6
    enrich_max_logs: int = 50
    job_max_attempts: int = 3
    job_backoff_seconds: float = 1.0

    # --- Alerting ---
    alert_interval_seconds: float = 300.0
    alert_initial_delay_seconds: float = 30.0
    alert_window_minutes: int = 5
    alert_cooldown_seconds: float = 300.0
    alert_spike_threshold: float = 0.5
    alert_min_error_rate: float = 0.1
    alert_critical_endpoints: list[str] = ["/payment", "/checkout", "/login", "/api/payment"]
    alert_critical_error_codes: list[str] = [
        "PAYMENT_GATEWAY_DOWN",
        "DATABASE_UNAVAILABLE",
        "AUTH_SERVICE_DOWN",
        "CARD_DECLINED",
        "PAYMENT_GATEWAY_TIMEOUT",
    ]
    alert_min_affected_users: int = 5
    alert_endpoint_failure_min: int = 3
    alert_high_value_min: int = 5
    revenue_loss_per_user: float = 50.0
    slack_webhook_url: str = ""

    # --- Retention ---
    retention_days: int = 7
    retention_interval_seconds: float = 86400.0

    # --- Service ---
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    prompt_version: str = "v1"

    # --- Observability ---
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    @property
    def is_dry_run(self) -> bool:
        return self.llm_provider == "dummy"

    @property
    def bq_logs_table_id(self) -> str:
        return f"{self.gcp_project_id}.{self.bq_dataset}.{self.bq_logs_table}"

    @property
    def bq_analyzed_table_id(self) -> str:
        return f"{self.gcp_project_id}.{self.bq_dataset}.{self.bq_analyzed_table}"

    @property
    def bq_alerts_table_id(self) -> str:
        return f"{self.gcp_project_id}.{self.bq_dataset}.{self.bq_alerts_table}"

    @property
    def bq_explanations_table_id(self) -> str:
        return f"{self.gcp_project_id}.{self.bq_dataset}.{self.bq_explanations_table}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
