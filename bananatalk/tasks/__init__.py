"""Scheduled maintenance jobs."""

from bananatalk.tasks.registry import build_default_jobs

__all__ = ["build_default_jobs"]
