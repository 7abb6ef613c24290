"""Unit tests for the job scheduler."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from bananatalk.scheduler import (
    SKIPPED_RUNNING,
    Job,
    JobScheduler,
    UnknownJobError,
    daily,
    every,
)

HOURLY = every(timedelta(hours=1))


async def _ok():
    return {"success": True}


def fast(ms: int, start_in_ms: int = 0):
    start = datetime.now(timezone.utc) + timedelta(milliseconds=start_in_ms or ms)
    return every(timedelta(milliseconds=ms), start_date=start)


class TestRegistration:
    """Tests for how jobs are handed to APScheduler."""

    async def test_jobs_are_single_flight_and_coalesced(self, clock):
        scheduler = JobScheduler(clock, [Job("story-archive", HOURLY, _ok)], timezone="Asia/Seoul")

        scheduler.start()
        try:
            aps_job = scheduler.aps.get_job("story-archive")
            assert aps_job.max_instances == 1
            assert aps_job.coalesce is True
            assert aps_job.misfire_grace_time is None
            assert isinstance(aps_job.trigger, IntervalTrigger)
            assert scheduler.status()[0]["next_run_at"] == aps_job.next_run_time
        finally:
            await scheduler.stop()

    async def test_job_added_after_start_is_scheduled(self, clock):
        scheduler = JobScheduler(clock)
        scheduler.start()
        try:
            scheduler.add_job(Job("late", daily(3), _ok))
            assert scheduler.aps.get_job("late") is not None
        finally:
            await scheduler.stop()


class TestOverlapSuppression:
    """Tests for single-flight firing."""

    async def test_slot_firing_during_a_run_is_skipped(self, clock):
        """A run longer than the interval suppresses the slots it overlaps."""
        release = asyncio.Event()

        async def slow_archive():
            await release.wait()
            return {"success": True, "archived": 0}

        job = Job("story-archive", fast(50), slow_archive)
        scheduler = JobScheduler(clock, [job])
        scheduler.start()
        try:
            await asyncio.sleep(0.4)

            assert job.running is True
            assert job.run_count == 1
            assert job.skipped_count >= 1

            release.set()
            await asyncio.sleep(0.2)
            assert job.last_result == {"success": True, "archived": 0}
        finally:
            await scheduler.stop()

    def test_max_instances_event_is_counted(self, clock):
        job = Job("story-archive", HOURLY, _ok)
        scheduler = JobScheduler(clock, [job])
        event = SimpleNamespace(job_id="story-archive", scheduled_run_times=[clock.now()])

        scheduler._on_max_instances(event)

        assert job.skipped_count == 1

    async def test_manual_trigger_while_running_is_skipped(self, clock):
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return {"success": True}

        scheduler = JobScheduler(clock, [Job("slow", HOURLY, slow)])

        first = asyncio.create_task(scheduler.trigger("slow"))
        await asyncio.sleep(0)

        assert await scheduler.trigger("slow") == {"success": False, "error": SKIPPED_RUNNING}

        release.set()
        assert await first == {"success": True}
        assert scheduler.get_job("slow").skipped_count == 1


class TestMissedSlots:
    """Tests for coalescing a backlog of missed slots."""

    async def test_backlog_runs_once(self, clock):
        job = Job("hourly", fast(200), _ok)
        scheduler = JobScheduler(clock, [job])
        scheduler.start()
        try:
            # Stall the event loop across several slots
            time.sleep(1.0)
            await asyncio.sleep(0.05)

            assert job.run_count == 1
            assert scheduler.next_run_at("hourly") > datetime.now(timezone.utc)
        finally:
            await scheduler.stop()


class TestFailureIsolation:
    """Tests for failing and hanging actions."""

    async def test_failure_is_recorded_and_job_keeps_firing(self, clock):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return {"success": True}

        flaky_job = Job("flaky", fast(200), flaky)
        steady_job = Job("steady", fast(200), _ok)
        scheduler = JobScheduler(clock, [flaky_job, steady_job])
        scheduler.start()
        try:
            await asyncio.sleep(0.3)
            assert flaky_job.last_error == "boom"
            assert flaky_job.running is False
            assert steady_job.last_error is None
            assert steady_job.run_count >= 1

            await asyncio.sleep(0.25)
            assert flaky_job.run_count >= 2
            assert flaky_job.last_error is None
        finally:
            await scheduler.stop()

    async def test_trigger_returns_failure_result(self, clock):
        async def broken():
            raise ValueError("bad row")

        scheduler = JobScheduler(clock, [Job("broken", HOURLY, broken)])

        result = await scheduler.trigger("broken")

        assert result == {"success": False, "error": "bad row"}
        assert scheduler.get_job("broken").running is False

    async def test_timeout_releases_job(self, clock):
        async def hang():
            await asyncio.sleep(1)
            return {"success": True}

        scheduler = JobScheduler(clock, [Job("hang", HOURLY, hang, timeout=0.01)])

        result = await scheduler.trigger("hang")

        assert result == {"success": False, "error": "timed out after 0.01s"}
        job = scheduler.get_job("hang")
        assert job.running is False
        assert job.last_error == "timed out after 0.01s"


class TestStop:
    """Tests for stop() releasing claimed jobs."""

    async def test_stop_cancels_in_flight_action(self, clock):
        async def slow():
            await asyncio.sleep(3600)
            return {"success": True}

        job = Job("slow", HOURLY, slow)
        scheduler = JobScheduler(clock, [job])
        run = asyncio.create_task(scheduler.trigger("slow"))
        await asyncio.sleep(0)
        assert job.running is True

        await scheduler.stop()

        assert run.cancelled()
        assert job.running is False
        assert job.last_result is None

    async def test_run_cancelled_before_it_starts_leaves_job_free(self, clock):
        job = Job("archive", HOURLY, _ok)
        scheduler = JobScheduler(clock, [job])

        run = asyncio.create_task(scheduler.trigger("archive"))
        run.cancel()
        await scheduler.stop()

        assert job.running is False
        assert await scheduler.trigger("archive") == {"success": True}

    async def test_job_runs_again_after_restart(self, clock):
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return {"success": True}

        job = Job("slow", HOURLY, slow)
        scheduler = JobScheduler(clock, [job])
        scheduler.start()
        asyncio.create_task(scheduler.trigger("slow"))
        await asyncio.sleep(0)

        await scheduler.stop()
        scheduler.start()
        try:
            release.set()
            assert await scheduler.trigger("slow") == {"success": True}
            assert job.skipped_count == 0
        finally:
            await scheduler.stop()


class TestControlSurface:
    """Tests for start, stop, trigger and run_all_now."""

    async def test_start_is_idempotent(self, clock):
        scheduler = JobScheduler(clock, [Job("hourly", HOURLY, _ok)])

        scheduler.start()
        first = scheduler.aps
        scheduler.start()

        assert scheduler.started is True
        assert scheduler.aps is first

        await scheduler.stop()
        assert scheduler.started is False
        assert scheduler.next_run_at("hourly") is None

    async def test_run_all_now_returns_result_per_job(self, clock):
        async def broken():
            raise RuntimeError("down")

        scheduler = JobScheduler(
            clock,
            [Job("a", HOURLY, _ok), Job("b", HOURLY, broken), Job("c", daily(2), _ok)],
        )

        results = await scheduler.run_all_now()

        assert list(results) == ["a", "b", "c"]
        assert results["a"] == {"success": True}
        assert results["b"] == {"success": False, "error": "down"}
        assert scheduler.get_job("c").last_run_at == clock.now()

    async def test_trigger_unknown_job_raises(self, clock):
        scheduler = JobScheduler(clock)

        with pytest.raises(UnknownJobError):
            await scheduler.trigger("nope")

    def test_duplicate_job_name_rejected(self, clock):
        scheduler = JobScheduler(clock, [Job("a", HOURLY, _ok)])

        with pytest.raises(ValueError):
            scheduler.add_job(Job("a", HOURLY, _ok))

    def test_status_lists_jobs(self, clock):
        scheduler = JobScheduler(clock, [Job("a", HOURLY, _ok)])

        [status] = scheduler.status()

        assert status["name"] == "a"
        assert status["trigger"] == "interval=1h"
        assert status["running"] is False
        assert status["run_count"] == 0
        assert status["next_run_at"] is None
