"""Run the LogPulse HTTP service.

Usage:
    python -m scripts.run_service
    python -m scripts.run_service --port 8080 --no-jobs
"""

from __future__ import annotations

import click
import uvicorn

from api.app import create_app
from config.settings import get_settings


@click.command("run-service")
@click.option("--host", default=None, help="Bind address (default: API_HOST).")
@click.option("--port", type=int, default=None, help="Port (default: API_PORT).")
@click.option("--no-jobs", is_flag=True, help="Serve the API without the background scheduler.")
def main(host: str | None, port: int | None, no_jobs: bool) -> None:
    settings = get_settings()
    app = create_app(settings=settings, background_jobs=not no_jobs)
    uvicorn.run(
        app,
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
