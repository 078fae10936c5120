"""Scheduler: schedule parsing, due-job selection and failure isolation."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from folio.core.errors import NotFound, ValidationFailed
from folio.jobs.scheduler import JobContext, Schedule, Scheduler, parse_schedule

T0 = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class SteppingClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class RecordingJob:
    def __init__(self, name: str, schedule: Schedule, *, fail: bool = False) -> None:
        self.name = name
        self.schedule = schedule
        self.fail = fail
        self.calls = 0

    async def run(self, ctx: JobContext) -> dict[str, Any]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("boom")
        return {"calls": self.calls}


class SlowJob:
    name = "slow"
    schedule = Schedule(interval=timedelta(hours=1), text="@hourly")

    async def run(self, ctx: JobContext) -> dict[str, Any]:
        await asyncio.sleep(5)
        return {}


def test_parse_schedule_forms():
    assert parse_schedule("@daily").interval == timedelta(days=1)
    assert parse_schedule("@hourly").interval == timedelta(hours=1)
    assert parse_schedule("@every 90s").interval == timedelta(seconds=90)
    assert parse_schedule("@every 15m").interval == timedelta(minutes=15)
    pinned = parse_schedule("@daily", at="16:30")
    assert str(pinned) == "@daily at 16:30"


@pytest.mark.parametrize(
    ("spec", "at"),
    [("*/5 * * * *", None), ("@every 0s", None), ("@weekly", None), ("@hourly", "10:00"), ("@daily", "25:99")],
)
def test_parse_schedule_rejects(spec, at):
    with pytest.raises(ValidationFailed) as excinfo:
        parse_schedule(spec, at=at)

    assert excinfo.value.code == "INVALID_SCHEDULE"


def test_pinned_daily_schedule_picks_next_wall_clock_time():
    schedule = parse_schedule("@daily", at="16:30")

    assert schedule.next_after(T0) == datetime(2024, 6, 3, 16, 30, tzinfo=timezone.utc)
    assert schedule.next_after(T0.replace(hour=17)) == datetime(2024, 6, 4, 16, 30, tzinfo=timezone.utc)


async def test_tick_runs_only_due_jobs_and_reschedules_from_completion():
    clock = SteppingClock(T0)
    hourly = RecordingJob("hourly", parse_schedule("@hourly"))
    daily = RecordingJob("daily", parse_schedule("@daily"))
    scheduler = Scheduler([hourly, daily], clock=clock)

    assert await scheduler.tick() == []

    clock.now = T0 + timedelta(hours=3)
    assert await scheduler.tick() == ["hourly"]
    assert hourly.calls == 1
    assert daily.calls == 0
    assert scheduler.status("hourly").next_run == T0 + timedelta(hours=4)
    assert scheduler.status("hourly").last_result == {"calls": 1}


async def test_failing_job_does_not_stop_the_others():
    clock = SteppingClock(T0)
    broken = RecordingJob("broken", parse_schedule("@every 1m"), fail=True)
    healthy = RecordingJob("healthy", parse_schedule("@every 1m"))
    scheduler = Scheduler([broken, healthy], clock=clock)

    clock.now = T0 + timedelta(minutes=5)
    assert await scheduler.tick() == ["broken", "healthy"]

    status = scheduler.status("broken")
    assert status.failures == 1
    assert status.runs == 1
    assert status.last_error == "RuntimeError: boom"
    assert scheduler.status("healthy").failures == 0


async def test_job_timeout_is_recorded():
    scheduler = Scheduler([SlowJob()], job_timeout_seconds=0.01)

    status = await scheduler.run_once("slow")

    assert status.failures == 1
    assert "timed out" in status.last_error
    assert status.running is False


async def test_run_once_unknown_job():
    scheduler = Scheduler()

    with pytest.raises(NotFound) as excinfo:
        await scheduler.run_once("missing")

    assert excinfo.value.code == "JOB_NOT_FOUND"


def test_duplicate_registration_is_rejected():
    job = RecordingJob("dup", parse_schedule("@hourly"))
    scheduler = Scheduler([job])

    with pytest.raises(ValueError):
        scheduler.register(job)


async def test_start_and_stop_loop():
    job = RecordingJob("fast", parse_schedule("@every 1s"))
    scheduler = Scheduler([job], tick_seconds=0.01)

    scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert not scheduler.running
