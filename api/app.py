"""HTTP surface for LogPulse.

Start with ``uvicorn api.app:create_app --factory`` or ``scripts/run_service.py``.
The engine (stores, oracle, queue, jobs) lives on ``app.state.engine`` and is
started and stopped by the lifespan.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI

from api import ai_logs, alerts, logs, search, timeline
from api.errors import register_exception_handlers
from config.settings import Settings, get_settings
from observability.logger import get_logger, setup_logging
from pipeline.engine import LogPulseEngine
from schemas.events import WireModel, utcnow

log = get_logger(__name__)


class HealthStatus(WireModel):
    status: str = "ok"
    timestamp: datetime
    llm_provider: str
    store: str
    scheduler_running: bool
    queue_waiting: int


def create_app(
    engine: LogPulseEngine | None = None,
    *,
    settings: Settings | None = None,
    background_jobs: bool = True,
) -> FastAPI:
    if engine is None:
        settings = settings or get_settings()
        setup_logging(settings.log_level, settings.log_format)
        engine = LogPulseEngine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("api.lifespan.enter")
        await engine.start(background_jobs=background_jobs)
        try:
            yield
        finally:
            log.info("api.lifespan.exit")
            await engine.stop()

    app = FastAPI(
        title="LogPulse",
        description="Log ingestion, AI analysis and smart alerting",
        lifespan=lifespan,
    )
    app.state.engine = engine
    register_exception_handlers(app)

    for module in (logs, ai_logs, alerts, search, timeline):
        app.include_router(module.router)

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health() -> HealthStatus:
        return HealthStatus(
            timestamp=utcnow(),
            llm_provider=getattr(engine.llm, "provider_name", "unknown"),
            store=engine.settings.store_backend,
            scheduler_running=engine.scheduler.running,
            queue_waiting=engine.ingestion.stats().waiting,
        )

    log.info("api.routers.registered", routers=len(app.router.routes))
    return app
