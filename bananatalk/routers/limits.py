"""Entitlement router."""

from fastapi import APIRouter

from bananatalk.dependencies import ClockDep, EntitlementServiceDep, QuotaSubjectDep
from bananatalk.schemas.limits import LimitsResponse

router = APIRouter(tags=["Limits"])


@router.get("/limits", response_model=LimitsResponse, response_model_by_alias=True)
async def get_limits(
    subject: QuotaSubjectDep,
    service: EntitlementServiceDep,
    clock: ClockDep,
) -> LimitsResponse:
    """Current tier, caps and live usage for the caller. Never consumes quota."""
    return await service.project(subject, clock.now())
