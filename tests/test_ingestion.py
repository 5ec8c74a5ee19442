"""Tests for the ingestion queue."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pipeline.batcher import BatchAccumulator
from pipeline.errors import AccumulatorClosedError
from pipeline.ingestion import IngestionQueue
from tests.factories import make_log


@pytest.fixture
def accumulator(log_store) -> BatchAccumulator:
    return BatchAccumulator(log_store, max_size=100, max_wait=60)


@pytest.fixture
def queue(accumulator) -> IngestionQueue:
    return IngestionQueue(accumulator, max_attempts=2, backoff=0.01)


def test_single_ack(queue):
    ack = queue.submit(make_log())

    assert ack.success
    assert ack.accepted == 1
    assert ack.message == "Log queued for processing"
    assert queue.stats().waiting == 1


def test_batch_ack(queue):
    ack = queue.submit_batch([make_log() for _ in range(3)])

    assert ack.accepted == 3
    assert ack.message == "3 logs queued for processing"


def test_empty_batch_rejected(queue):
    with pytest.raises(ValidationError):
        queue.submit_batch([])


async def test_drain_without_worker_hands_jobs_to_accumulator(queue, accumulator, log_store):
    queue.submit(make_log())
    queue.submit_batch([make_log(), make_log()])

    await queue.drain()

    assert accumulator.pending == 3
    assert queue.stats().processed == 2
    await accumulator.flush()
    assert len(log_store) == 3


async def test_worker_processes_jobs(queue, accumulator, log_store):
    await queue.start()
    queue.submit_batch([make_log() for _ in range(5)])

    await queue.drain()
    await queue.close()
    await accumulator.close()

    assert len(log_store) == 5
    stats = queue.stats()
    assert stats.waiting == 0
    assert stats.persisted == 5


async def test_closed_queue_rejects_submissions(queue):
    await queue.close()

    with pytest.raises(AccumulatorClosedError):
        queue.submit(make_log())


async def test_job_fails_when_accumulator_closed(queue, accumulator):
    await accumulator.close()
    queue.submit(make_log())

    await queue.drain()

    stats = queue.stats()
    assert stats.failed == 1
    assert stats.processed == 0
