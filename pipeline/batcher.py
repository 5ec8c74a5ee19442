"""Batch accumulator: coalesces ingested events into bulk writes.

A buffer is flushed when it reaches ``max_size`` events or ``max_wait``
seconds after the first unflushed event, whichever comes first. A periodic
sweep flushes anything left behind when no timer is pending, and ``close()``
performs a final flush before shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from observability.logger import get_logger
from pipeline.errors import AccumulatorClosedError

if TYPE_CHECKING:
    from protocols.storage import LogStore
    from schemas.events import LogEvent

log = get_logger(__name__)


class BatchAccumulator:
    def __init__(
        self,
        store: LogStore,
        *,
        max_size: int = 50,
        max_wait: float = 1.0,
        sweep_interval: float = 2.0,
    ) -> None:
        self.store = store
        self.max_size = max_size
        self.max_wait = max_wait
        self.sweep_interval = sweep_interval

        self._buffer: list[LogEvent] = []
        self._flush_lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._sweeper: asyncio.Task | None = None
        self._closed = False

        self.submitted = 0
        self.persisted = 0
        self.failed = 0
        self.flushes = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="accumulator-sweep")
            log.info(
                "accumulator.started",
                max_size=self.max_size,
                max_wait=self.max_wait,
                sweep_interval=self.sweep_interval,
            )

    async def submit(self, event: LogEvent) -> None:
        await self.submit_batch([event])

    async def submit_batch(self, events: list[LogEvent]) -> None:
        if self._closed:
            raise AccumulatorClosedError("accumulator is closed; event not buffered")
        if not events:
            return

        self._buffer.extend(events)
        self.submitted += len(events)

        if len(self._buffer) >= self.max_size:
            await self.flush()
        elif self._timer is None:
            self._timer = self._spawn(self._flush_after(self.max_wait))

    async def flush(self) -> int:
        """Write every buffered event, ``max_size`` at a time. Returns events persisted."""
        self._cancel_timer()
        persisted = 0
        async with self._flush_lock:
            while self._buffer:
                batch = self._buffer[: self.max_size]
                del self._buffer[: self.max_size]
                persisted += await self._write(batch)
        return persisted

    async def drain(self) -> int:
        """Flush until the buffer is empty and no write is in flight.

        ``flush`` waits on the flush lock, so a batch a timer or the sweep has
        already taken out of the buffer is persisted before this returns.
        """
        total = 0
        while True:
            total += await self.flush()
            async with self._flush_lock:
                if not self._buffer:
                    return total

    async def close(self) -> int:
        """Stop accepting events, stop the sweep and flush what is left."""
        self._closed = True
        if self._sweeper is not None:
            # Under the lock the sweep is sleeping or waiting, never mid-write
            async with self._flush_lock:
                self._sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._sweeper
            self._sweeper = None
        flushed = await self.drain()
        log.info(
            "accumulator.closed",
            final_flush=flushed,
            submitted=self.submitted,
            persisted=self.persisted,
            failed=self.failed,
        )
        return flushed

    async def _write(self, batch: list[LogEvent]) -> int:
        self.flushes += 1
        try:
            await self.store.insert_many(batch)
            self.persisted += len(batch)
            log.info("accumulator.flush.done", count=len(batch))
            return len(batch)
        except Exception as e:
            log.warning("accumulator.flush.bulk_failed", count=len(batch), error=str(e))

        # Per-item fallback: one bad event must not sink the rest of the batch
        saved = 0
        for event in batch:
            try:
                await self.store.insert_one(event)
                saved += 1
            except Exception as e:
                self.failed += 1
                log.error("accumulator.item.dropped", log_id=event.log_id, error=str(e))
        self.persisted += saved
        log.info("accumulator.flush.fallback_done", saved=saved, dropped=len(batch) - saved)
        return saved

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach first so flush() does not cancel the task running it
        self._timer = None
        await self.flush()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            if self._buffer and self._timer is None:
                log.debug("accumulator.sweep.flush", pending=len(self._buffer))
                await self.flush()
