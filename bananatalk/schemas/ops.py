"""Ops operation schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class JobStatus(BaseModel):
    """Runtime state of one scheduled job."""

    name: str
    trigger: str
    running: bool
    run_count: int
    skipped_count: int
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_error: str | None = None
    last_result: dict[str, Any] | None = None


class JobListResponse(BaseModel):
    started: bool
    jobs: list[JobStatus]


class JobRunResponse(BaseModel):
    """Result of a manually triggered job."""

    name: str
    result: dict[str, Any]


class RunAllResponse(BaseModel):
    results: dict[str, dict[str, Any]]
