"""Maintenance job scheduler on APScheduler's asyncio backend.

APScheduler owns the timing: triggers, ``max_instances=1`` so a slot that
fires while the previous run is still going is skipped rather than queued,
and ``coalesce`` so a backlog of missed slots runs once. ``JobScheduler``
wraps each action with the bookkeeping and timeout the ops endpoints report.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from bananatalk.scheduler.triggers import Schedule
from bananatalk.utils.clock import Clock
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

JobAction = Callable[[], Awaitable[dict[str, Any]]]

SKIPPED_RUNNING = "skipped: running"


class UnknownJobError(KeyError):
    """No job is registered under the requested name."""


@dataclass(eq=False)
class Job:
    name: str
    schedule: Schedule
    action: JobAction
    timeout: float = 300.0
    running: bool = False
    run_count: int = 0
    skipped_count: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_result: Optional[dict[str, Any]] = None

    def status(self, next_run_at: Optional[datetime] = None) -> dict[str, Any]:
        return {
            "name": self.name,
            "trigger": self.schedule.description,
            "running": self.running,
            "run_count": self.run_count,
            "skipped_count": self.skipped_count,
            "last_run_at": self.last_run_at,
            "next_run_at": next_run_at,
            "last_error": self.last_error,
            "last_result": self.last_result,
        }


class JobScheduler:
    """Runs maintenance jobs on wall-clock triggers."""

    def __init__(self, clock: Clock, jobs: Iterable[Job] = (), timezone: str = "UTC"):
        self.clock = clock
        self.timezone = timezone
        self.aps: Optional[AsyncIOScheduler] = None
        self._jobs: dict[str, Job] = {}
        self._inflight: set[asyncio.Task[Any]] = set()
        for job in jobs:
            self.add_job(job)

    @property
    def started(self) -> bool:
        return self.aps is not None

    @property
    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def add_job(self, job: Job) -> None:
        if job.name in self._jobs:
            raise ValueError(f"duplicate job name: {job.name}")
        self._jobs[job.name] = job
        if self.aps is not None:
            self._register(self.aps, job)

    def get_job(self, name: str) -> Job:
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownJobError(name) from None

    def _register(self, aps: AsyncIOScheduler, job: Job) -> None:
        aps.add_job(
            self._run_scheduled,
            trigger=job.schedule.trigger,
            args=[job.name],
            id=job.name,
            name=job.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )

    def start(self) -> None:
        """Start firing jobs. Calling again while started is a logged no-op."""
        if self.aps is not None:
            log.info("scheduler already started", jobs=len(self._jobs))
            return
        aps = AsyncIOScheduler(timezone=self.timezone)
        aps.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
        for job in self._jobs.values():
            self._register(aps, job)
        aps.start()
        self.aps = aps
        log.info("scheduler started", jobs=[j.name for j in self._jobs.values()])

    async def stop(self) -> None:
        """Stop firing, cancel in-flight actions and wait for them to unwind."""
        aps, self.aps = self.aps, None
        if aps is not None:
            aps.shutdown(wait=False)
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        for job in self._jobs.values():
            job.running = False
        log.info("scheduler stopped")

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        job = self._jobs.get(event.job_id)
        if job is None:
            return
        job.skipped_count += 1
        log.warning(
            "job firing skipped",
            job=job.name,
            reason=SKIPPED_RUNNING,
            scheduled_for=event.scheduled_run_times[-1] if event.scheduled_run_times else None,
        )

    async def _run_scheduled(self, name: str) -> dict[str, Any]:
        return await self._run(self._jobs[name], source="schedule")

    async def _run(self, job: Job, source: str) -> dict[str, Any]:
        """Single-flight entry for scheduled and manual runs alike."""
        if job.running:
            job.skipped_count += 1
            log.warning("job firing skipped", job=job.name, reason=SKIPPED_RUNNING, source=source)
            return {"success": False, "error": SKIPPED_RUNNING}

        # No await between the claim and the try, so cancellation always releases it
        job.running = True
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            return await self._execute(job, source)
        finally:
            job.running = False
            if task is not None:
                self._inflight.discard(task)

    async def _execute(self, job: Job, source: str) -> dict[str, Any]:
        started = self.clock.now()
        job.last_run_at = started
        job.run_count += 1
        log.info("job started", job=job.name, source=source)
        try:
            async with asyncio.timeout(job.timeout):
                result = await job.action()
        except TimeoutError:
            job.last_error = f"timed out after {job.timeout:g}s"
            log.error("job timed out", job=job.name, timeout_seconds=job.timeout)
            return {"success": False, "error": job.last_error}
        except Exception as e:
            job.last_error = str(e) or type(e).__name__
            log.exception("job failed", job=job.name, error=str(e), error_type=type(e).__name__)
            return {"success": False, "error": job.last_error}

        job.last_result = result
        job.last_error = None
        elapsed = (self.clock.now() - started).total_seconds()
        log.info("job completed", job=job.name, elapsed_seconds=elapsed, result=result)
        return result

    async def trigger(self, name: str) -> dict[str, Any]:
        """Run one job now and return its result, honouring single-flight."""
        return await self._run(self.get_job(name), source="manual")

    async def run_all_now(self) -> dict[str, dict[str, Any]]:
        """Run every job once, sequentially, returning ``{name: result}``."""
        results: dict[str, dict[str, Any]] = {}
        for name in list(self._jobs):
            results[name] = await self.trigger(name)
        return results

    def next_run_at(self, name: str) -> Optional[datetime]:
        if self.aps is None:
            return None
        aps_job = self.aps.get_job(name)
        return aps_job.next_run_time if aps_job is not None else None

    def status(self) -> list[dict[str, Any]]:
        return [job.status(self.next_run_at(job.name)) for job in self._jobs.values()]
