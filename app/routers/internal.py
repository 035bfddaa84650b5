"""
Internal quota and usage endpoints for other services.
"""
from fastapi import APIRouter, Depends, status
import logging

from app.auth.dependencies import verify_internal_token
from app.models.schemas import QuotaCheckRequest, QuotaDecision, UsageLogAccepted, UsageLogRequest
from app.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_token)],
)


@router.post("/quota-check", response_model=QuotaDecision, response_model_exclude_none=True)
async def quota_check(
    body: QuotaCheckRequest,
    services: ServiceContainer = Depends(get_services)
):
    """Evaluate the quota of a user without recording a call."""
    return await services.quota_evaluator.check_quota(body.user_id)


@router.post("/usage-log", response_model=UsageLogAccepted, status_code=status.HTTP_202_ACCEPTED)
async def usage_log(
    body: UsageLogRequest,
    services: ServiceContainer = Depends(get_services)
):
    """Queue a usage log entry. Returns immediately."""
    accepted = services.log_queue.enqueue(body.user_id, body.key_id, body.endpoint, body.status)
    return UsageLogAccepted(accepted=accepted, queued=len(services.log_queue))
