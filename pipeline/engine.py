"""LogPulse engine: the per-process application context.

Owns the stores, the oracle and every service built on them, and registers
the background jobs:

1. Ingestion worker + batch accumulator (continuous)
2. AI analysis pass (every ``analysis_interval_seconds``, shortly after start)
3. Alert evaluation (every ``alert_interval_seconds``, after a short delay)
4. Retention cleanup (daily, and once at start)

``stop()`` drains the ingestion queue, performs the final accumulator flush
and only then tears the scheduler down.
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

from observability.logger import get_logger
from pipeline.alert_engine import AlertRules, SmartAlertEngine, linear_revenue_loss
from pipeline.analyzer import LogAnalyzer
from pipeline.batcher import BatchAccumulator
from pipeline.enricher import ExplanationEnricher
from pipeline.ingestion import IngestionQueue
from pipeline.retention import RetentionService
from pipeline.scheduler import JobScheduler
from pipeline.search import LogSearchService
from pipeline.timeline import TimelineService
from providers.factory import Stores, build_alert_sinks, build_llm, build_stores

if TYPE_CHECKING:
    from config.settings import Settings
    from protocols.alert_sink import AlertSink
    from protocols.llm import LLMProvider
    from schemas.analysis import AnalysisPassResult

log = get_logger(__name__)


class LogPulseEngine:
    def __init__(
        self,
        settings: Settings,
        *,
        stores: Stores | None = None,
        llm: LLMProvider | None = None,
        sinks: list[AlertSink] | None = None,
        clock=None,
    ) -> None:
        self.settings = settings
        self.stores = stores or build_stores(settings)
        self.llm = llm or build_llm(settings)
        sinks = build_alert_sinks(settings) if sinks is None else sinks
        clock_kw = {"clock": clock} if clock is not None else {}
        revenue_loss = partial(linear_revenue_loss, unit_loss=settings.revenue_loss_per_user)

        self.accumulator = BatchAccumulator(
            self.stores.logs,
            max_size=settings.batch_max_size,
            max_wait=settings.batch_max_wait_seconds,
            sweep_interval=settings.batch_sweep_interval_seconds,
        )
        self.ingestion = IngestionQueue(
            self.accumulator,
            max_attempts=settings.ingest_job_attempts,
            backoff=settings.job_backoff_seconds,
        )
        self.enricher = ExplanationEnricher(
            self.stores.analyzed,
            self.llm,
            max_logs=settings.enrich_max_logs,
            timeout=settings.llm_explain_timeout_seconds,
            prompt_version=settings.prompt_version,
        )
        self.analyzer = LogAnalyzer(
            self.stores.logs,
            self.stores.analyzed,
            self.llm,
            enricher=self.enricher,
            explain_threshold=settings.cluster_explain_threshold,
            timeout=settings.llm_timeout_seconds,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            prompt_version=settings.prompt_version,
        )
        self.alert_engine = SmartAlertEngine(
            self.stores.logs,
            self.stores.alerts,
            rules=AlertRules.from_settings(settings),
            sinks=sinks,
            revenue_loss=revenue_loss,
            **clock_kw,
        )
        self.search = LogSearchService(
            self.stores.logs,
            self.stores.analyzed,
            self.llm,
            timeout=settings.llm_search_timeout_seconds,
            prompt_version=settings.prompt_version,
            **clock_kw,
        )
        self.timeline = TimelineService(
            self.stores.logs,
            self.stores.analyzed,
            revenue_loss=revenue_loss,
            **clock_kw,
        )
        self.retention = RetentionService(
            self.stores.logs,
            self.stores.analyzed,
            default_days=settings.retention_days,
            **clock_kw,
        )
        self.scheduler = JobScheduler(
            max_attempts=settings.job_max_attempts,
            backoff=settings.job_backoff_seconds,
        )
        self._register_jobs()
        self.started = False

    def _register_jobs(self) -> None:
        s = self.settings
        self.scheduler.add_job(
            "analysis",
            self.run_analysis_pass,
            interval=s.analysis_interval_seconds,
            initial_delay=s.analysis_initial_delay_seconds,
        )
        self.scheduler.add_job(
            "alerts",
            self.alert_engine.evaluate_alerts,
            interval=s.alert_interval_seconds,
            initial_delay=s.alert_initial_delay_seconds,
        )
        self.scheduler.add_job(
            "retention",
            self.retention.cleanup,
            interval=s.retention_interval_seconds,
        )

    async def run_analysis_pass(self, batch_size: int | None = None) -> AnalysisPassResult:
        return await self.analyzer.run_analysis_pass(batch_size or self.settings.analysis_batch_size)

    async def start(self, *, background_jobs: bool = True) -> None:
        if self.started:
            return
        await self.accumulator.start()
        await self.ingestion.start()
        if background_jobs:
            self.scheduler.start()
        self.started = True
        log.info(
            "engine.started",
            llm=getattr(self.llm, "provider_name", "unknown"),
            model=getattr(self.llm, "model_id", "unknown"),
            store=self.settings.store_backend,
            background_jobs=background_jobs,
        )

    async def stop(self) -> None:
        if not self.started:
            return
        await self.ingestion.close()
        flushed = await self.accumulator.close()
        await self.scheduler.stop()
        self.started = False
        log.info("engine.stopped", final_flush=flushed)
