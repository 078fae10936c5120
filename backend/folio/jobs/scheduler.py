"""Cooperative background scheduler.

One loop wakes every ``tick_seconds``, runs each due job in turn and
computes its next run from the current time, so missed ticks are not made
up. A failing job is logged and recorded on its status; it never stops the
loop.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from datetime import time as wall_time
from typing import Any, Callable, Protocol, Sequence

from folio.core.errors import NotFound, OperationCancelled, ValidationFailed
from folio.core.telemetry import tracer

logger = logging.getLogger(__name__)

_EVERY_PATTERN = re.compile(r"^@every\s+(\d+)\s*([smh])$")
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours"}


@dataclass(frozen=True)
class Schedule:
    """A fixed interval, optionally pinned to a UTC wall-clock time for daily jobs."""

    interval: timedelta
    at: wall_time | None = None
    text: str = ""

    def next_after(self, moment: datetime) -> datetime:
        if self.at is None:
            return moment + self.interval
        candidate = moment.replace(
            hour=self.at.hour, minute=self.at.minute, second=0, microsecond=0
        )
        while candidate <= moment:
            candidate += self.interval
        return candidate

    def __str__(self) -> str:
        return self.text


def parse_schedule(spec: str, at: str | None = None) -> Schedule:
    """Parse ``@daily``, ``@hourly`` or ``@every <n>s|m|h``; ``at`` pins daily runs to ``HH:MM``."""

    text = (spec or "").strip().lower()
    if text == "@daily":
        interval = timedelta(days=1)
    elif text == "@hourly":
        interval = timedelta(hours=1)
    else:
        match = _EVERY_PATTERN.match(text)
        if match is None:
            raise ValidationFailed(f"Invalid schedule {spec!r}", code="INVALID_SCHEDULE")
        amount = int(match.group(1))
        if amount <= 0:
            raise ValidationFailed(f"Invalid schedule {spec!r}", code="INVALID_SCHEDULE")
        interval = timedelta(**{_UNITS[match.group(2)]: amount})
    pinned = None
    if at:
        if interval != timedelta(days=1):
            raise ValidationFailed("A wall-clock time only applies to daily schedules", code="INVALID_SCHEDULE")
        try:
            pinned = datetime.strptime(at.strip(), "%H:%M").time()
        except ValueError:
            raise ValidationFailed(f"Invalid time of day {at!r}", code="INVALID_SCHEDULE") from None
    label = f"{text} at {pinned.strftime('%H:%M')}" if pinned else text
    return Schedule(interval=interval, at=pinned, text=label)


class JobContext:
    """Cancellation and deadline handed to a running job."""

    def __init__(self, *, timeout_seconds: float | None = None, cancel_event: asyncio.Event | None = None) -> None:
        self.cancel_event = cancel_event or asyncio.Event()
        self.deadline = time.monotonic() + timeout_seconds if timeout_seconds else None

    @property
    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled("Job cancelled", code="JOB_CANCELLED")


class Job(Protocol):
    name: str
    schedule: Schedule

    async def run(self, ctx: JobContext) -> dict[str, Any]:
        ...


@dataclass
class JobStatus:
    name: str
    schedule: str
    next_run: datetime | None = None
    last_started: datetime | None = None
    last_finished: datetime | None = None
    last_duration_seconds: float | None = None
    last_error: str | None = None
    last_result: dict[str, Any] | None = None
    runs: int = 0
    failures: int = 0
    running: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Entry:
    job: Job
    status: JobStatus
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class Scheduler:
    def __init__(
        self,
        jobs: Sequence[Job] = (),
        *,
        tick_seconds: float = 60.0,
        job_timeout_seconds: float | None = 300.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.tick_seconds = tick_seconds
        self.job_timeout_seconds = job_timeout_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._stop_event: asyncio.Event | None = None
        self._cancel_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        for job in jobs:
            self.register(job)

    def register(self, job: Job) -> None:
        if job.name in self._entries:
            raise ValueError(f"Job {job.name} is already registered")
        status = JobStatus(name=job.name, schedule=str(job.schedule), next_run=job.schedule.next_after(self._clock()))
        self._entries[job.name] = _Entry(job=job, status=status)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def statuses(self) -> list[JobStatus]:
        return [entry.status for entry in self._entries.values()]

    def status(self, name: str) -> JobStatus:
        return self._entry(name).status

    def _entry(self, name: str) -> _Entry:
        try:
            return self._entries[name]
        except KeyError:
            raise NotFound(f"Unknown job {name!r}", code="JOB_NOT_FOUND") from None

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Run every job due at ``now`` sequentially; returns the names run."""

        now = now or self._clock()
        ran: list[str] = []
        for entry in list(self._entries.values()):
            if self._cancel_event.is_set():
                break
            next_run = entry.status.next_run
            if next_run is not None and next_run > now:
                continue
            await self._execute(entry)
            entry.status.next_run = entry.job.schedule.next_after(self._clock())
            ran.append(entry.job.name)
        return ran

    async def run_once(self, name: str) -> JobStatus:
        entry = self._entry(name)
        await self._execute(entry)
        return entry.status

    async def _execute(self, entry: _Entry) -> None:
        job, status = entry.job, entry.status
        async with entry.lock:
            ctx = JobContext(timeout_seconds=self.job_timeout_seconds, cancel_event=self._cancel_event)
            status.running = True
            status.last_started = self._clock()
            started = time.monotonic()
            logger.info("Job %s started", job.name)
            with tracer.start_as_current_span(f"job.{job.name}") as span:
                try:
                    result = await asyncio.wait_for(job.run(ctx), timeout=self.job_timeout_seconds)
                except asyncio.TimeoutError:
                    status.failures += 1
                    status.last_error = f"timed out after {self.job_timeout_seconds}s"
                    logger.error("Job %s timed out", job.name)
                except OperationCancelled as exc:
                    status.failures += 1
                    status.last_error = str(exc)
                    logger.warning("Job %s cancelled", job.name)
                except Exception as exc:  # noqa: BLE001 - a failing job must not stop the loop
                    status.failures += 1
                    status.last_error = f"{type(exc).__name__}: {exc}"
                    span.record_exception(exc)
                    logger.exception("Job %s failed", job.name)
                else:
                    status.last_error = None
                    status.last_result = result
                finally:
                    status.running = False
                    status.runs += 1
                    status.last_finished = self._clock()
                    status.last_duration_seconds = time.monotonic() - started
            logger.info("Job %s finished in %.2fs", job.name, status.last_duration_seconds)

    async def run_forever(self) -> None:
        self._stop_event = asyncio.Event()
        self._cancel_event.clear()
        logger.info("Scheduler started with jobs: %s", ", ".join(self._entries) or "none")
        try:
            while not self._stop_event.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_seconds)
                except asyncio.TimeoutError:
                    continue
        finally:
            self._stop_event = None
            logger.info("Scheduler stopped")

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError("Scheduler is already running")
        self._task = asyncio.create_task(self.run_forever(), name="folio-scheduler")
        return self._task

    async def stop(self) -> None:
        self._cancel_event.set()
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None


__all__ = [
    "Job",
    "JobContext",
    "JobStatus",
    "Schedule",
    "Scheduler",
    "parse_schedule",
]
