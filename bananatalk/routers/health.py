"""Health check router."""

from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text

from bananatalk.dependencies import DbSession, SchedulerDep
from bananatalk.schemas.health import HealthResponse, ServiceStatus
from bananatalk.utils.logger import get_logger

router = APIRouter()
log = get_logger(__name__)

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession, scheduler: SchedulerDep) -> HealthResponse:
    """
    Health check for the database and the job scheduler.

    Returns:
        HealthResponse with status and service details
    """
    services = {}
    overall_status = "ok"

    try:
        await db.execute(text("SELECT 1"))
        services["database"] = ServiceStatus(status="healthy", message="Connected")
    except Exception as e:
        log.error("health check failed", service="database", error=str(e))
        services["database"] = ServiceStatus(status="unhealthy", message="Service unavailable")
        overall_status = "degraded"

    failing = [job.name for job in scheduler.jobs if job.last_error]
    services["scheduler"] = ServiceStatus(
        status="healthy",
        message="Running" if scheduler.started else "Not started",
        details={"jobs": len(scheduler.jobs), "failing_jobs": failing},
    )

    return HealthResponse(
        status=overall_status,
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )
