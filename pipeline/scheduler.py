"""Periodic background jobs with bounded retry.

Each job runs on its own asyncio task: an initial delay, then one tick per
interval. A tick is retried with exponential backoff; once the attempts are
exhausted the failure is logged and the loop waits for the next tick.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from observability.logger import bind_job, clear_job, get_logger

log = get_logger(__name__)


def job_retrying(max_attempts: int = 3, backoff: float = 1.0, **kwargs: object) -> AsyncRetrying:
    """Retry policy shared by background jobs and ingestion jobs."""
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * 8),
        reraise=True,
        **kwargs,
    )


@dataclass
class PeriodicJob:
    name: str
    interval: float
    func: Callable[[], Awaitable[object]]
    initial_delay: float = 0.0
    runs: int = 0
    failures: int = 0
    last_error: str | None = field(default=None, repr=False)


class JobScheduler:
    def __init__(self, *, max_attempts: int = 3, backoff: float = 1.0) -> None:
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.jobs: dict[str, PeriodicJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def add_job(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        *,
        interval: float,
        initial_delay: float = 0.0,
    ) -> PeriodicJob:
        if name in self.jobs:
            raise ValueError(f"job already registered: {name}")
        job = PeriodicJob(name=name, interval=interval, func=func, initial_delay=initial_delay)
        self.jobs[name] = job
        return job

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        for name, job in self.jobs.items():
            if name not in self._tasks:
                self._tasks[name] = asyncio.create_task(self._loop(job), name=f"job-{name}")
        log.info("scheduler.started", jobs=sorted(self.jobs))

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        log.info("scheduler.stopped", jobs=len(tasks))

    async def run_once(self, name: str) -> bool:
        """Run one tick of ``name`` now, under the retry policy. Returns success."""
        return await self._tick(self.jobs[name])

    async def _loop(self, job: PeriodicJob) -> None:
        if job.initial_delay > 0:
            await asyncio.sleep(job.initial_delay)
        while True:
            await self._tick(job)
            await asyncio.sleep(job.interval)

    async def _tick(self, job: PeriodicJob) -> bool:
        bind_job(job.name)
        try:
            async for attempt in job_retrying(self.max_attempts, self.backoff):
                with attempt:
                    n = attempt.retry_state.attempt_number
                    if n > 1:
                        log.warning("job.retry", job=job.name, attempt=n)
                    await job.func()
            job.runs += 1
            job.last_error = None
            return True
        except Exception as e:
            job.failures += 1
            job.last_error = str(e)
            log.error(
                "job.failed",
                job=job.name,
                attempts=self.max_attempts,
                error=str(e),
                exc_info=True,
            )
            return False
        finally:
            clear_job()
