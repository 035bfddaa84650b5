"""
Usage dashboard router.
"""
from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool
from typing import List
import logging

from app.database.models import User
from app.auth.dependencies import get_current_user
from app.models.schemas import UsageBucket, UsageSummary
from app.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("", response_model=List[UsageBucket])
async def get_usage(
    period: str = Query("week", pattern="^(day|week|month|year)$", description="Aggregation period"),
    current_user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services)
):
    """Call counts for the current user, bucketed by period."""
    return await run_in_threadpool(services.ledger.usage_series, current_user.id, period)


@router.get("/summary", response_model=UsageSummary)
async def get_usage_summary(
    current_user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services)
):
    """Quota consumption of the current user against their plan."""
    return await run_in_threadpool(services.quota_evaluator.summary, current_user.id)
