"""Ingestion queue: acknowledge producers immediately, buffer asynchronously.

Jobs are the tagged variant ``IngestJob`` (single or batch). A single worker
task takes them off an ``asyncio.Queue`` and dispatches each one on its type
into the ``BatchAccumulator`` under the job retry policy.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from tenacity import retry_if_not_exception_type

from observability.logger import get_logger
from pipeline.errors import AccumulatorClosedError
from pipeline.scheduler import job_retrying
from schemas.jobs import BatchLogJob, IngestAck, IngestJob, QueueStats, SingleLogJob

if TYPE_CHECKING:
    from pipeline.batcher import BatchAccumulator
    from schemas.events import LogEvent

log = get_logger(__name__)


class IngestionQueue:
    def __init__(
        self,
        accumulator: BatchAccumulator,
        *,
        max_attempts: int = 3,
        backoff: float = 1.0,
    ) -> None:
        self.accumulator = accumulator
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._queue: asyncio.Queue[IngestJob] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._closed = False

        self.processed = 0
        self.failed = 0

    def enqueue(self, job: IngestJob) -> IngestAck:
        if self._closed:
            raise AccumulatorClosedError("ingestion queue is closed")
        self._queue.put_nowait(job)
        return IngestAck(
            job_id=job.job_id,
            accepted=job.size,
            message="Log queued for processing" if job.size == 1 else f"{job.size} logs queued for processing",
        )

    def submit(self, event: LogEvent) -> IngestAck:
        return self.enqueue(SingleLogJob(event=event))

    def submit_batch(self, events: list[LogEvent]) -> IngestAck:
        return self.enqueue(BatchLogJob(events=events))

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="ingestion-worker")
            log.info("ingest.worker.started")

    async def drain(self) -> None:
        """Wait until every queued job has been handed to the accumulator."""
        if self._worker is None:
            while not self._queue.empty():
                job = self._queue.get_nowait()
                try:
                    await self._process(job)
                finally:
                    self._queue.task_done()
            return
        await self._queue.join()

    async def close(self) -> None:
        self._closed = True
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        log.info("ingest.worker.stopped", processed=self.processed, failed=self.failed)

    def stats(self) -> QueueStats:
        return QueueStats(
            waiting=self._queue.qsize(),
            processed=self.processed,
            failed=self.failed,
            buffered=self.accumulator.pending,
            persisted=self.accumulator.persisted,
            dropped=self.accumulator.failed,
        )

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    async def _process(self, job: IngestJob) -> None:
        try:
            async for attempt in job_retrying(
                self.max_attempts,
                self.backoff,
                retry=retry_if_not_exception_type(AccumulatorClosedError),
            ):
                with attempt:
                    await self._dispatch(job)
            self.processed += 1
        except Exception as e:
            self.failed += 1
            log.error(
                "ingest.job.failed",
                job_id=job.job_id,
                kind=job.kind,
                size=job.size,
                error=str(e),
            )

    async def _dispatch(self, job: IngestJob) -> None:
        if isinstance(job, SingleLogJob):
            await self.accumulator.submit(job.event)
        elif isinstance(job, BatchLogJob):
            await self.accumulator.submit_batch(job.events)
        else:
            raise TypeError(f"unknown ingestion job: {type(job).__name__}")
