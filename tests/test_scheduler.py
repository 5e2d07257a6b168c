"""Tests for the APScheduler-backed tick scheduler."""

import asyncio

import pytest

from airtrack.engine.scheduler import TICK_JOB_ID, TickScheduler


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        TickScheduler(lambda: None, 0)


@pytest.mark.asyncio
async def test_first_run_is_immediate():
    ran = asyncio.Event()

    async def job():
        ran.set()

    scheduler = TickScheduler(job, interval_ms=60_000)
    scheduler.start()
    try:
        await asyncio.wait_for(ran.wait(), timeout=2.0)
        status = scheduler.status()
        assert status["running"] is True
        assert status["interval_ms"] == 60_000
        assert status["jobs"][0]["id"] == TICK_JOB_ID
    finally:
        scheduler.stop()
    # shutdown is queued onto the event loop
    await asyncio.sleep(0.01)
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_failing_job_keeps_schedule_alive():
    calls = []

    async def job():
        calls.append(1)
        raise RuntimeError("tick blew up")

    scheduler = TickScheduler(job, interval_ms=100)
    scheduler.start()
    try:
        await asyncio.sleep(0.5)
    finally:
        scheduler.stop()

    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_reschedule_updates_interval():
    async def job():
        pass

    scheduler = TickScheduler(job, interval_ms=60_000)
    scheduler.start()
    try:
        scheduler.reschedule(30_000)
        assert scheduler.status()["interval_ms"] == 30_000
        with pytest.raises(ValueError):
            scheduler.reschedule(-1)
    finally:
        scheduler.stop()
