"""Tests for age-based retention."""

from __future__ import annotations

from datetime import timedelta

import pytest

from pipeline.retention import RetentionService
from schemas.alerts import Alert
from tests.factories import T0, make_analyzed, make_log


@pytest.fixture
def retention(log_store, analyzed_store, clock) -> RetentionService:
    return RetentionService(log_store, analyzed_store, default_days=7, clock=clock)


async def test_deletes_strictly_older_than_cutoff(retention, log_store, analyzed_store):
    await log_store.insert_many(
        [
            make_log(at=T0 - timedelta(days=8)),
            make_log(at=T0 - timedelta(days=7)),
            make_log(at=T0 - timedelta(days=1)),
        ]
    )
    for days in (9, 7, 2):
        await analyzed_store.insert_one(make_analyzed(at=T0 - timedelta(days=days)))

    result = await retention.cleanup(7)

    assert result.cutoff == T0 - timedelta(days=7)
    assert result.logs_deleted == 1
    assert result.analyzed_deleted == 1
    assert len(log_store) == 2
    assert len(analyzed_store) == 2


async def test_default_days_used_when_unset(retention, log_store):
    await log_store.insert_many([make_log(at=T0 - timedelta(days=10)), make_log(at=T0)])

    result = await retention.cleanup()

    assert result.days == 7
    assert result.logs_deleted == 1


async def test_zero_days_clears_everything_before_now(retention, log_store):
    await log_store.insert_many([make_log(at=T0 - timedelta(seconds=1)), make_log(at=T0)])

    result = await retention.cleanup(0)

    assert result.logs_deleted == 1
    assert len(log_store) == 1


async def test_negative_days_rejected(retention):
    with pytest.raises(ValueError):
        await retention.cleanup(-1)


async def test_alerts_are_kept(retention, alert_store):
    old = Alert(
        alert_id="alert_1_spike_abcdef",
        type="ERROR_SPIKE",
        severity="HIGH",
        title="old",
        description="old",
        created_at=T0 - timedelta(days=30),
    )
    await alert_store.insert(old)

    await retention.cleanup(1)

    assert await alert_store.get(old.alert_id) is not None
