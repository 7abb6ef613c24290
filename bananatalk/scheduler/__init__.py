"""Periodic job engine."""

from bananatalk.scheduler.scheduler import SKIPPED_RUNNING, Job, JobScheduler, UnknownJobError
from bananatalk.scheduler.triggers import Schedule, daily, every, weekly

__all__ = [
    "SKIPPED_RUNNING",
    "Job",
    "JobScheduler",
    "UnknownJobError",
    "Schedule",
    "daily",
    "every",
    "weekly",
]
