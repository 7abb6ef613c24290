"""Ops router for the job scheduler. Protected by API key."""

from fastapi import APIRouter

from bananatalk.dependencies import ApiKeyCheck, SchedulerDep
from bananatalk.exceptions import ResourceNotFoundError
from bananatalk.scheduler import UnknownJobError
from bananatalk.schemas.ops import JobListResponse, JobRunResponse, JobStatus, RunAllResponse
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/ops", tags=["Ops"])


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(scheduler: SchedulerDep, _api_key: ApiKeyCheck) -> JobListResponse:
    """List scheduled jobs with their last and next runs."""
    return JobListResponse(
        started=scheduler.started,
        jobs=[JobStatus(**status) for status in scheduler.status()],
    )


@router.post("/jobs/run-all", response_model=RunAllResponse)
async def run_all_jobs(scheduler: SchedulerDep, _api_key: ApiKeyCheck) -> RunAllResponse:
    """Run every job once, in order, and return each result."""
    log.info("manual run of all jobs requested")
    results = await scheduler.run_all_now()
    return RunAllResponse(results=results)


@router.post("/jobs/{name}/trigger", response_model=JobRunResponse)
async def trigger_job(name: str, scheduler: SchedulerDep, _api_key: ApiKeyCheck) -> JobRunResponse:
    """Run one job now. A job that is already running is skipped, not queued."""
    try:
        result = await scheduler.trigger(name)
    except UnknownJobError:
        raise ResourceNotFoundError("Job", name)
    log.info("job triggered manually", job=name, success=result.get("success"))
    return JobRunResponse(name=name, result=result)
